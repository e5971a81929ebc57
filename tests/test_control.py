"""
Test cases for FitControl.
"""

import pytest

import sys
import os
# Add parent directory to path to find mixedtables package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mixedtables import control
from mixedtables.control import FitControl


class TestFitControl:

    def test_defaults(self, monkeypatch):
        monkeypatch.setattr(control, "DEFAULT_CHOLESKY", "auto")
        ctrl = FitControl()

        assert ctrl.tolerance == 1e-8
        assert ctrl.max_iter == 1000
        assert not ctrl.monitoring
        assert ctrl.optimizer == "L-BFGS-B"
        assert ctrl.cholesky == "auto"

    def test_default_backend_from_environment(self, monkeypatch):
        monkeypatch.setattr(control, "DEFAULT_CHOLESKY", "dense")
        assert FitControl().cholesky == "dense"
        assert FitControl(cholesky="auto").cholesky == "auto"

    @pytest.mark.parametrize("kwargs", [
        {"optimizer": "BFGS"},
        {"cholesky": "qr"},
        {"max_iter": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            FitControl(**kwargs)

    def test_repr(self):
        text = repr(FitControl(optimizer="Powell", cholesky="dense"))
        assert "Powell" in text
        assert "dense" in text
