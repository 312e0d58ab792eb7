import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
TOPOLOGY_WORKDIR = Path(os.getenv("TOPOVIEW_WORKDIR", str(BASE_DIR / "topologies")))

# Ensure workdir exists
TOPOLOGY_WORKDIR.mkdir(parents=True, exist_ok=True)

TOPOLOGY_SUFFIX = ".clab.yml"
ANNOTATIONS_SUFFIX = ".annotations.json"

LINK_SAVE_FORMATS = ("flat", "extended")


def parse_link_save_format(value: str) -> str:
    if value not in LINK_SAVE_FORMATS:
        raise ValueError(f"TOPOVIEW_LINK_FORMAT must be one of {LINK_SAVE_FORMATS}, got {value!r}")
    return value


# Editor behaviour
SELF_WRITE_GRACE_SECONDS = float(os.getenv("TOPOVIEW_SELF_WRITE_GRACE", "0.05"))
DEFAULT_LINK_SAVE_FORMAT = parse_link_save_format(os.getenv("TOPOVIEW_LINK_FORMAT", "flat"))
