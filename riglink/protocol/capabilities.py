from __future__ import annotations

from typing import Iterable

from riglink.state import RigCapabilities

# Scalar labels of the dump_caps output and the field they populate
_SCALAR_LABELS = {
    "Model name:": "model_name",
    "Mfg name:": "mfg_name",
    "Backend version:": "backend_version",
    "Rig type:": "rig_type",
    "PTT type:": "ptt_type",
    "DCD type:": "dcd_type",
    "Port type:": "port_type",
    "Serial speed:": "serial_speed",
}

# Whitespace-separated list labels
_LIST_LABELS = {
    "Mode list:": "modes",
    "VFO list:": "vfos",
    "Get functions:": "functions",
    "Get level:": "levels",
}


def _label_value(line: str, label: str) -> str:
    rest = line[len(label):]
    if "\t" in line:
        rest = line.split("\t", 1)[1]
    return rest.strip()


def parse_capabilities(lines: Iterable[str] | str) -> RigCapabilities:
    """Build ``RigCapabilities`` from the verbatim lines of a dump_caps body.

    Unknown labels are skipped so newer daemons adding fields keep working.
    """
    if isinstance(lines, str):
        lines = lines.splitlines()
    caps = RigCapabilities()
    for line in lines:
        for label, attr in _SCALAR_LABELS.items():
            if line.startswith(label):
                setattr(caps, attr, _label_value(line, label))
                break
        else:
            for label, attr in _LIST_LABELS.items():
                if line.startswith(label):
                    tokens = [t for t in _label_value(line, label).split() if t]
                    setattr(caps, attr, tokens)
                    break
    return caps


__all__ = ["parse_capabilities"]
