"""Supported AI command-line tools and how each one is invoked."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Provider:
    """One AI command-line tool.

    ``base_args`` run the tool non-interactively with edits auto-approved.
    When ``prompt_via_stdin`` is set the prompt is piped to the tool, otherwise
    it is passed as the final argument.
    """

    name: str
    command: str
    base_args: tuple[str, ...] = ()
    model_flag: str = "--model"
    prompt_via_stdin: bool = True
    credential_dirs: tuple[str, ...] = ()
    secret_env: tuple[str, ...] = ()
    read_only_dirs: tuple[str, ...] = ()

    def build_command(self, prompt: str, model: str | None = None) -> list[str]:
        cmd = [self.command, *self.base_args]
        if model:
            cmd += [self.model_flag, model]
        if not self.prompt_via_stdin:
            cmd.append(prompt)
        return cmd


CLAUDE = Provider(
    name="claude",
    command="claude",
    base_args=("-p", "--permission-mode", "acceptEdits"),
    credential_dirs=(".claude",),
    secret_env=("ANTHROPIC_API_KEY",),
)

GEMINI = Provider(
    name="gemini",
    command="gemini",
    base_args=("--yolo", "--output-format", "text"),
    model_flag="-m",
    credential_dirs=(".gemini",),
    read_only_dirs=(".config/gcloud",),
    secret_env=("GOOGLE_API_KEY", "GEMINI_API_KEY"),
)

CODEX = Provider(
    name="codex",
    command="codex",
    base_args=("exec", "--full-auto"),
    model_flag="-m",
    prompt_via_stdin=False,
    credential_dirs=(".codex",),
    secret_env=("OPENAI_API_KEY",),
)

OPENCODE = Provider(
    name="opencode",
    command="opencode",
    base_args=("run",),
    prompt_via_stdin=False,
    credential_dirs=(".local/share/opencode",),
    secret_env=("OPENAI_API_KEY", "ANTHROPIC_API_KEY"),
)

PROVIDERS: dict[str, Provider] = {
    "claude": CLAUDE,
    "claude-code": CLAUDE,
    "claude-cli": CLAUDE,
    "anthropic": CLAUDE,
    "gemini": GEMINI,
    "gemini-cli": GEMINI,
    "codex": CODEX,
    "codex-cli": CODEX,
    "openai": CODEX,
    "gpt": CODEX,
    "opencode": OPENCODE,
}


def resolve_provider(name: str) -> Provider:
    """Look up a provider by name or alias. Raises ValueError if unsupported."""
    provider = PROVIDERS.get((name or "").strip().lower())
    if provider is None:
        raise ValueError(f"Unsupported provider: {name!r}")
    return provider
