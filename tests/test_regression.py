"""Pytest wrapper for scripts/qa_regression.py.

Unit checks (no server needed) run always.
Integration checks (need a running backend) are skipped when it is not reachable.

Run:  pytest tests/test_regression.py -v
      pytest tests/test_regression.py -v -m "not integration"  # unit-only
"""

from __future__ import annotations

import os
import sys

import pytest

# Make scripts importable
SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "..", "scripts")
BACKEND_DIR = os.path.join(os.path.dirname(__file__), "..", "backend")
sys.path.insert(0, SCRIPTS_DIR)
sys.path.insert(0, BACKEND_DIR)

import qa_regression  # noqa: E402


# ---------------------------------------------------------------------------
# Pure unit tests (no server required)
# ---------------------------------------------------------------------------

def test_surface_buffer_exclusion_logic():
    """Levels inside the surface buffer leave the thermal state untouched."""
    qa_regression.check_surface_buffer_exclusion_logic()


def test_top_of_lift_clamped_to_cloudbase():
    """Top of lift never ends above cloudbase, including when thermals stop triggering."""
    qa_regression.check_top_of_lift_clamped_to_cloudbase()


def test_soaring_override_logic():
    """Soaring override applies only when no hazard is active."""
    qa_regression.check_soaring_override_logic()


def test_wind_direction_wraparound():
    """North sector wraps across 0°."""
    qa_regression.check_wind_direction_wraparound()


def test_no_trigger_round_trip():
    """Cool surface over the whole day: no lift, top of lift at the surface."""
    qa_regression.check_no_trigger_round_trip()


# ---------------------------------------------------------------------------
# Integration tests (require live Cloudbase backend)
# ---------------------------------------------------------------------------

@pytest.mark.integration
def test_health(cloudbase_base):
    qa_regression.check_health(cloudbase_base)


@pytest.mark.integration
def test_forecast_endpoint(cloudbase_base):
    """Forecast endpoint returns hours with non-negative lift."""
    qa_regression.check_forecast_endpoint(cloudbase_base)


@pytest.mark.integration
def test_flying_potential_scale(cloudbase_base):
    """Combined rating stays on the 0..5 scale for every site type."""
    qa_regression.check_flying_potential_scale(cloudbase_base)


@pytest.mark.integration
def test_bad_payload_rejected(cloudbase_base):
    """Malformed payloads are rejected with 422 and a request id."""
    qa_regression.check_bad_payload_rejected(cloudbase_base)
