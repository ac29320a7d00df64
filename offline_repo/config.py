import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

BACKENDS = ("packages", "apt")

# Packages the installer's late_command / preseed pulls in on the target:
# the hypervisor stack plus the tools needed to finish the install offline.
DEFAULT_SEEDS = [
    "proxmox-default-kernel",
    "proxmox-ve",
    "openssh-server",
    "gnupg",
    "tasksel",
    "curl",
]

# Wanted on their own; their dependencies are expected to come from the base image.
DEFAULT_EXTRA = ["postfix", "open-iscsi", "chrony"]

# Debian first, then the Proxmox archive the hypervisor packages live in.
DEFAULT_BASE_URLS = [
    "http://deb.debian.org/debian",
    "http://download.proxmox.com/debian/pve",
]


@dataclass(frozen=True)
class PipelineConfig:
    backend: str = "packages"
    repo_dir: str = "./repository"
    base_urls: List[str] = field(default_factory=lambda: list(DEFAULT_BASE_URLS))
    seeds: List[str] = field(default_factory=lambda: list(DEFAULT_SEEDS))
    extra: List[str] = field(default_factory=lambda: list(DEFAULT_EXTRA))
    tasks: List[str] = field(default_factory=list)
    cache_dir: str = "./downloaded"
    output_dir: str = "./pve"
    workers: int = 8
    fetch_workers: int = 4
    timeout: Optional[float] = 1800.0
    log_file: Optional[str] = None

    def validate(self) -> "PipelineConfig":
        if self.backend not in BACKENDS:
            raise RuntimeError(f"Unknown backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
        if self.backend == "packages" and not self.base_urls:
            raise RuntimeError(
                "No base URLs configured. The 'packages' backend downloads .deb files "
                "from the archive, so at least one base URL is required."
            )
        if not (self.seeds or self.extra or self.tasks):
            raise RuntimeError("Nothing to do: no seed packages, extra packages or tasks configured.")
        if self.workers < 1 or self.fetch_workers < 1:
            raise RuntimeError("Worker counts must be at least 1.")
        return self


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Read a JSON config file. Every key is optional; unknown keys are an error."""
    if not path:
        return {}
    if not os.path.isfile(path):
        raise RuntimeError(f"Config file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise RuntimeError(f"Could not read config file {path}: {e}")
    if not isinstance(raw, dict):
        raise RuntimeError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(PipelineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise RuntimeError(f"Unknown config key(s) in {path}: {', '.join(unknown)}")
    return raw


def build_config(file_values: Dict[str, Any], overrides: Dict[str, Any]) -> PipelineConfig:
    """Defaults <- config file <- command line. None in `overrides` means 'not given'."""
    config = replace(PipelineConfig(), **file_values)
    given = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **given).validate()
