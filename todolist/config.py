# To-do service — configuration
# Override paths, models and limits via config.yaml or environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import List, Optional

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"


@dataclass
class Settings:
    """Runtime configuration for the to-do server."""

    # Storage
    db_path: str = "~/.local/share/todolist/todolist.db"
    session_file: str = "~/.local/share/todolist/session.json"
    static_dir: str = ""  # empty = ./static next to the package

    # Hosted model service
    api_base_url: str = "https://api.anthropic.com"
    api_key: str = ""
    api_version: str = "2023-06-01"
    text_model: str = "claude-3-5-sonnet-20241022"
    vision_model: str = "claude-3-5-sonnet-20240620"
    vision_alt_model: str = "claude-3-haiku-20240307"
    request_timeout: float = 30.0
    text_max_tokens: int = 500

    # Local OCR
    tesseract_cmd: str = "tesseract"
    ocr_enabled: bool = True
    ocr_min_confidence: float = 30.0

    # Behavior
    refresh_interval_secs: float = 30.0
    typing_debounce_secs: float = 2.0
    max_image_bytes: int = 10 * 1024 * 1024
    max_drafts: int = 10
    admin_emails: List[str] = field(default_factory=list)

    def resolve_paths(self):
        """Expand ~ and fill in the default static directory."""
        self.db_path = str(Path(self.db_path).expanduser())
        self.session_file = str(Path(self.session_file).expanduser())
        if not self.static_dir:
            self.static_dir = str(Path(__file__).parent.parent / "static")
        self.admin_emails = [e.strip().lower() for e in self.admin_emails if e.strip()]

    def apply_env(self):
        """Environment variables win over the YAML file."""
        env = os.environ
        if env.get("TODOLIST_DB"):
            self.db_path = env["TODOLIST_DB"]
        if env.get("TODOLIST_SESSION_FILE"):
            self.session_file = env["TODOLIST_SESSION_FILE"]
        if env.get("TODOLIST_STATIC_DIR"):
            self.static_dir = env["TODOLIST_STATIC_DIR"]
        api_key = env.get("TODOLIST_API_KEY") or env.get("ANTHROPIC_API_KEY")
        if api_key:
            self.api_key = api_key
        if env.get("TODOLIST_ADMIN_EMAILS"):
            self.admin_emails = env["TODOLIST_ADMIN_EMAILS"].replace(",", " ").split()

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Settings":
        """Load settings from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                known = {fld.name for fld in fields(cls)}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except Exception:
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env()
        cfg.resolve_paths()
        return cfg
