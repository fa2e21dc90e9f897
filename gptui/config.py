"""User configuration: assistant profiles, theme and session options.

The configuration lives in ``config.toml`` inside the platform config
directory and is created with commented defaults on first run.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from platformdirs import user_config_dir, user_data_dir

from .core.session import DEFAULT_KEEP_RECENT, DEFAULT_TOKEN_BUDGET
from .errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "gptui"
CONFIG_FILENAME = "config.toml"
DATABASE_FILENAME = "gpt.db"
DEFAULT_API_KEY_VAR = "OPENAI_API_KEY"
BASE_URL_VAR = "OPENAI_BASE_URL"
DEFAULT_THEME = "monokai"

DEFAULT_CONFIG_TOML = '''\
# Pygments style used for code blocks, e.g.
#   monokai, dracula, nord, one-dark, gruvbox-dark, solarized-light, github-dark
# Run `pygmentize -L styles` for the full list.
syntax_theme = "monokai"

# Command used by Ctrl-E to compose a message. Defaults to $VISUAL / $EDITOR.
# editor = "nvim"

# Environment variable holding the API key.
# api_key_var = "OPENAI_API_KEY"

# Alternative endpoint speaking the OpenAI chat completions protocol.
# OPENAI_BASE_URL takes precedence when set.
# base_url = "http://localhost:8000/v1"

# Once the unsummarized conversation grows past token_budget tokens, older
# messages are condensed into a summary. The keep_recent newest messages are
# always sent verbatim.
token_budget = 6000
keep_recent = 2

# Assistant profiles, chosen with `gptui new --prompt LABEL`.
#   label:  name shown in pickers
#   model:  model identifier passed to the API
#   prompt: system prompt starting every thread
#   color:  optional colour for the label in the picker (name or #rrggbb)
[[prompts]]
label = "Assistant"
model = "gpt-4"
prompt = "You are a helpful assistant"

[[prompts]]
label = "Programmer"
model = "gpt-4"
# Triple quotes allow multi-line strings
prompt = """You are a pair programmer. Answer programming questions with a \
short explanation and example code in fenced code blocks.

Assume the person you are talking to is an experienced programmer, so skip \
basic concepts unless asked. When you rely on a named algorithm or a library, \
link to its first-party documentation.

Prefer clear, descriptive identifiers over short ones, and give every function \
a brief documentation comment."""
'''


@dataclass(frozen=True)
class AssistantProfile:
    label: str
    model: str
    prompt: str
    color: Optional[str] = None


@dataclass
class Config:
    syntax_theme: str = DEFAULT_THEME
    prompts: List[AssistantProfile] = field(default_factory=list)
    editor: Optional[str] = None
    api_key_var: str = DEFAULT_API_KEY_VAR
    base_url: Optional[str] = None
    token_budget: int = DEFAULT_TOKEN_BUDGET
    keep_recent: int = DEFAULT_KEEP_RECENT
    db_path: Path = field(default_factory=lambda: Path(user_data_dir(APP_NAME)) / DATABASE_FILENAME)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    def default_path() -> Path:
        return Path(user_config_dir(APP_NAME)) / CONFIG_FILENAME

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Read the configuration, writing the default file if none exists."""
        path = Path(path or cls.default_path())
        try:
            if not path.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
                logger.info("Wrote default configuration to %s", path)
            raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
        return cls.from_dict(raw, source=str(path))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], source: str = "<config>") -> "Config":
        try:
            prompts = [
                AssistantProfile(
                    label=str(entry["label"]),
                    model=str(entry["model"]),
                    prompt=str(entry["prompt"]),
                    color=entry.get("color"),
                )
                for entry in raw.get("prompts", [])
            ]
            config = cls(
                syntax_theme=str(raw.get("syntax_theme", DEFAULT_THEME)),
                prompts=prompts,
                editor=raw.get("editor"),
                api_key_var=str(raw.get("api_key_var", DEFAULT_API_KEY_VAR)),
                base_url=raw.get("base_url"),
                token_budget=int(raw.get("token_budget", DEFAULT_TOKEN_BUDGET)),
                keep_recent=int(raw.get("keep_recent", DEFAULT_KEEP_RECENT)),
            )
            if "db_path" in raw:
                config.db_path = Path(raw["db_path"]).expanduser()
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigError(f"Invalid configuration in {source}: {exc!r}") from exc

        if not config.prompts:
            raise ConfigError(f"No [[prompts]] defined in {source}")
        if config.token_budget <= 0 or config.keep_recent < 0:
            raise ConfigError(f"token_budget must be positive and keep_recent non-negative in {source}")
        return config

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_prompt(self, label: str) -> Optional[AssistantProfile]:
        """Return the profile named *label* (case-insensitive)."""
        wanted = label.lower()
        return next((p for p in self.prompts if p.label.lower() == wanted), None)

    @property
    def default_profile(self) -> AssistantProfile:
        return self.prompts[0]

    def api_key(self) -> str:
        key = os.getenv(self.api_key_var)
        if not key:
            raise ConfigError(
                f"No API key found in ${self.api_key_var}",
                hint=f"export {self.api_key_var}=... or set api_key_var in the config",
            )
        return key

    def resolved_base_url(self) -> Optional[str]:
        return os.getenv(BASE_URL_VAR) or self.base_url

    def session_options(self) -> Dict[str, Any]:
        """Keyword options for :meth:`ChatSession.open`."""
        return {"token_budget": self.token_budget, "keep_recent": self.keep_recent}
