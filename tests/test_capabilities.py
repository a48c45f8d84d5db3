from __future__ import annotations

import pytest

from riglink.errors import CapabilityError
from riglink.protocol.capabilities import parse_capabilities
from riglink.protocol.codec import decode_capabilities

from tests.utils.fake_rigctld import dump_caps_text


@pytest.mark.unit
def test_mode_list_split_on_whitespace():
    caps = parse_capabilities(["Mode list:\tAM CW FM LSB USB"])
    assert caps.modes == ["AM", "CW", "FM", "LSB", "USB"]


@pytest.mark.unit
def test_full_dump_caps_body():
    caps = parse_capabilities(decode_capabilities(dump_caps_text()))
    assert caps.model_name == "Dummy"
    assert caps.mfg_name == "Hamlib"
    assert caps.backend_version == "20220522.0"
    assert caps.rig_type == "Other"
    assert caps.ptt_type == "Rig capable"
    assert caps.port_type == "None"
    assert caps.serial_speed == "0..0 baud, 8N1, ctrl=NONE"
    assert caps.vfos == ["VFOA", "VFOB"]
    assert caps.functions == ["FAGC", "NB", "COMP", "VOX", "TONE"]
    assert "STRENGTH" in caps.levels
    assert caps.has_level("STRENGTH")
    # "Set level:" is a different label than "Get level:"
    assert caps.levels == ["PREAMP", "ATT", "AF", "RF", "SQL", "STRENGTH"]


@pytest.mark.unit
def test_unknown_labels_are_ignored():
    caps = parse_capabilities(
        "Caps dump for model: 1\nBackend status:\tStable\nWhatever:\tx y\nVFO list:\tVFOA\n"
    )
    assert caps.vfos == ["VFOA"]
    assert caps.model_name == ""
    assert caps.modes == []


@pytest.mark.unit
def test_empty_level_list():
    caps = parse_capabilities(["Get level:\t"])
    assert caps.levels == []
    assert not caps.has_level("STRENGTH")


@pytest.mark.unit
def test_require_level_raises_capability_error():
    caps = parse_capabilities(["Get level:\tAF RF SQL"])
    caps.require_level("AF")
    with pytest.raises(CapabilityError, match="STRENGTH level not supported"):
        caps.require_level("STRENGTH")
