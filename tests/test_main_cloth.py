import json
import logging

import numpy as np

from pbdcloth import setup_logging
from pbdcloth.main_cloth import build_parser, main, make_settings


def test_headless_run_with_ground(tmp_path):
    log_file = tmp_path / "cloth.log"
    pos = main(["-n", "4", "-s", "20", "-i", "3", "--ground", "-0.2", "--wind", "0", "0", "1",
                "-o", str(log_file)])
    assert pos.shape == (25, 3)
    assert np.isfinite(pos).all()
    # top corners are pinned
    np.testing.assert_allclose(pos[[4, 24]], [[0.0, 1.0, 0.0], [1.0, 1.0, 0.0]], atol=1e-6)
    assert pos[:, 1].min() > -0.25
    assert "step 19" in log_file.read_text()


def test_settings_from_config_file_and_flags(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"density": 0.2, "damper": 0.5}))
    settings = make_settings(build_parser().parse_args(["-c", str(path), "-i", "7"]))
    assert settings.density == 0.2
    assert settings.damper == 0.5
    assert settings.iteration_count == 7


def test_setup_logging_does_not_stack_handlers(tmp_path):
    setup_logging(logging.INFO)
    logger = setup_logging(logging.DEBUG, str(tmp_path / "out.log"))
    assert len(logger.handlers) == 2
    logging.getLogger("pbdcloth.simulator").debug("hello")
    assert "hello" in (tmp_path / "out.log").read_text()
