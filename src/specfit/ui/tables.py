"""Summary tables for fit and sweep results."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich import box
from rich.table import Table

from specfit.ui.console import Verbosity, console, get_verbosity

if TYPE_CHECKING:
    from specfit.core.fitting.peak import PeakFitResult
    from specfit.core.optimization.filters import SweepResult

__all__ = [
    "create_table",
    "peak_fit_table",
    "print_summary",
    "sweep_table",
]


def create_table(title: str | None = None, show_header: bool = True) -> Table:
    """Create a table with the package styling."""
    return Table(
        title=title,
        title_style="header" if title else None,
        box=box.ROUNDED,
        show_header=show_header,
        header_style="bold cyan",
        border_style="dim",
    )


def print_summary(items: dict[str, Any], title: str = "Summary") -> None:
    """Print a two-column key/value table."""
    table = create_table(title, show_header=False)
    table.add_column("Item", style="metric")
    table.add_column("Value", style="value")
    for key, value in items.items():
        table.add_row(key, str(value))
    console.print(table)


def peak_fit_table(result: PeakFitResult, title: str = "Peak fit") -> Table:
    """Parameters, FWHM and goodness of fit of a peak fit.

    In verbose mode the warnings recorded during the fit are appended.
    """
    table = create_table(title)
    table.add_column("Parameter", style="key")
    table.add_column("Value", style="value", justify="right")
    for name, value in result.parameters.items():
        table.add_row(name, f"{value:.4g}")
    table.add_row("fwhm", f"{result.fwhm:.4g}")
    if result.gof is not None:
        table.add_row("chi2 / dof", f"{result.gof.chi2:.1f} / {result.gof.dof}")
        table.add_row("p-value", f"{result.gof.pvalue:.3g}")
    table.add_row("converged", "yes" if result.converged else "[warning]no[/warning]")
    if get_verbosity() >= Verbosity.VERBOSE:
        for diagnostic in result.diagnostics:
            if diagnostic.level == "warning":
                table.add_row(diagnostic.code, f"[warning]{diagnostic.message}[/warning]")
    return table


def sweep_table(result: SweepResult, parameter: str = "value", metric: str = "metric") -> Table:
    """Metric per grid value, with the optimum highlighted."""
    table = create_table(f"Sweep over {parameter}")
    table.add_column(parameter, style="key", justify="right")
    table.add_column(metric, style="value", justify="right")
    optimum = result.optimum.nominal_value
    for value, m in zip(result.grid, result.metrics, strict=True):
        style = "metric" if value == optimum and not result.is_default else None
        table.add_row(f"{value:.4g}", f"{m:.4g}", style=style)
    return table
