"""Test logging setup, progress bars and summary tables."""

import dataclasses
import json
import logging

import pytest

from specfit.core.domain.measurement import measurement
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_single_peak
from specfit.core.optimization.filters import select_sweep_optimum
from specfit.core.shared.diagnostics import Diagnostic, DiagnosticLevel
from specfit.core.shared.events import EventDispatcher, emit_sweep_progress
from specfit.ui.console import Verbosity, console, get_verbosity, icon, set_verbosity
from specfit.ui.logging import close_logging, setup_logging
from specfit.ui.progress import track_sweep
from specfit.ui.tables import peak_fit_table, print_summary, sweep_table


@pytest.fixture
def logging_cleanup():
    yield
    close_logging()


class TestLogging:
    """Tests for the specfit logger setup."""

    def test_json_file(self, tmp_path, logging_cleanup):
        """Should write one JSON object per line."""
        log_file = tmp_path / "logs" / "specfit.json"
        logger = setup_logging(log_file)
        logging.getLogger("specfit.core.fitting").warning("fit did not converge")
        for handler in logger.handlers:
            handler.flush()

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert records[0]["message"].startswith("specfit v")
        assert records[-1]["level"] == "WARNING"
        assert records[-1]["logger"] == "specfit.core.fitting"

    def test_text_file(self, tmp_path, logging_cleanup):
        """Should write plain text for other suffixes."""
        log_file = tmp_path / "specfit.log"
        logger = setup_logging(log_file, level=logging.DEBUG)
        logger.debug("debug message")
        for handler in logger.handlers:
            handler.flush()
        assert "| DEBUG | specfit | debug message" in log_file.read_text()

    def test_close_detaches_handlers(self, tmp_path):
        """Should leave the logger without handlers."""
        logger = setup_logging(tmp_path / "specfit.log", verbose=True)
        assert len(logger.handlers) == 2
        close_logging()
        assert logger.handlers == []


class TestConsole:
    """Tests for console settings."""

    def test_verbosity(self):
        """Should silence the console in quiet mode."""
        try:
            set_verbosity(Verbosity.QUIET)
            assert get_verbosity() == Verbosity.QUIET
            assert console.quiet
        finally:
            set_verbosity(Verbosity.NORMAL)
        assert not console.quiet

    def test_unknown_icon_falls_back_to_bullet(self):
        """Should return the bullet for unknown names."""
        assert icon("unknown") == icon("bullet")


class TestProgress:
    """Tests for the sweep progress handler."""

    def test_counts_skipped_points(self):
        """Should count invalid points and stop after the last one."""
        dispatcher = EventDispatcher()
        handler = track_sweep(dispatcher, "ENC sweep")

        emit_sweep_progress(dispatcher, 1, 3, valid=True)
        emit_sweep_progress(dispatcher, 2, 3, valid=False)
        assert handler.progress is not None
        emit_sweep_progress(dispatcher, 3, 3, valid=False)

        assert handler.skipped == 2
        assert handler.progress is None

    def test_quiet_mode_counts_without_bar(self):
        """Should count skipped points without drawing a bar in quiet mode."""
        dispatcher = EventDispatcher()
        handler = track_sweep(dispatcher, "ENC sweep")
        try:
            set_verbosity(Verbosity.QUIET)
            emit_sweep_progress(dispatcher, 1, 2, valid=False)
            assert handler.progress is None
            assert handler.active
            emit_sweep_progress(dispatcher, 2, 2, valid=True)
        finally:
            set_verbosity(Verbosity.NORMAL)

        assert handler.skipped == 1
        assert not handler.active


class TestTables:
    """Tests for the summary tables."""

    def test_peak_fit_table(self, gauss_peak_hist):
        """Should list every parameter and the goodness of fit."""
        fit = fit_single_peak(gauss_peak_hist, estimate_single_peak_stats(gauss_peak_hist), low_e_tail=False)
        table = peak_fit_table(fit)
        rows = list(table.columns[0].cells)
        assert rows[: len(fit.parameters)] == list(fit.parameters)
        assert {"fwhm", "chi2 / dof", "p-value", "converged"} <= set(rows)

    def test_peak_fit_table_verbose_warnings(self, gauss_peak_hist):
        """Should list the fit warnings only in verbose mode."""
        fit = fit_single_peak(gauss_peak_hist, estimate_single_peak_stats(gauss_peak_hist), low_e_tail=False)
        warning = Diagnostic(DiagnosticLevel.WARNING, "fwhm_fallback", "using the Gaussian FWHM")
        fit = dataclasses.replace(fit, diagnostics=(*fit.diagnostics, warning))

        assert "fwhm_fallback" not in list(peak_fit_table(fit).columns[0].cells)
        try:
            set_verbosity(Verbosity.VERBOSE)
            rows = list(peak_fit_table(fit).columns[0].cells)
        finally:
            set_verbosity(Verbosity.NORMAL)
        assert rows[-1] == "fwhm_fallback"

    def test_sweep_table(self):
        """Should have one row per valid grid point."""
        metrics = [measurement(3.0, 0.1), measurement(1.0, 0.1)]
        result = select_sweep_optimum([1.0, 2.0], metrics, default=5.0, step=1.0)
        table = sweep_table(result, parameter="rise time")
        assert table.row_count == 2
        assert table.columns[0].header == "rise time"

    def test_print_summary(self):
        """Should print keys and values to the console."""
        console.clear()
        print_summary({"optimum": 2.0, "metric": "1.0+/-0.1"}, title="ENC sweep")
        output = console.export_text()
        assert "optimum" in output
        assert "ENC sweep" in output
