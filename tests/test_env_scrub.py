import subprocess
import sys

from october.env_scrub import SANDBOX_ENV_ALLOWLIST, scrubbed_env


def test_allowlist_excludes_secrets():
    assert "ANTHROPIC_API_KEY" not in SANDBOX_ENV_ALLOWLIST
    environ = {
        "ANTHROPIC_API_KEY": "placeholder",
        "GITHUB_TOKEN": "token",
        "APP_SECRET": "secret",
        "HOME": "/home/u",
    }
    assert scrubbed_env(environ) == [("HOME", "/home/u")]


def test_scrubbed_env_only_returns_allowlisted_keys():
    for key, _ in scrubbed_env():
        assert key in SANDBOX_ENV_ALLOWLIST, f"leaked {key}"


def test_scrubbed_env_filters_given_mapping_in_allowlist_order():
    environ = {
        "TERM": "xterm",
        "ANTHROPIC_API_KEY": "placeholder",
        "PATH": "/usr/bin",
        "OTHER": "x",
    }
    assert scrubbed_env(environ) == [("PATH", "/usr/bin"), ("TERM", "xterm")]


def test_spawned_child_does_not_see_secret():
    environ = {"ANTHROPIC_API_KEY": "placeholder", "PATH": "/usr/bin"}
    child_env = dict(scrubbed_env(environ))
    out = subprocess.run(
        [
            sys.executable,
            "-c",
            "import os, sys; sys.stdout.write(os.environ.get('ANTHROPIC_API_KEY', ''))",
        ],
        env=child_env,
        capture_output=True,
        text=True,
        check=True,
    )
    assert out.stdout == ""