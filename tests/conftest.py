import dataclasses
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from macsign.config import BuildConfig, MacOptions
from macsign.errors import ExternalToolFailure
from macsign.flatten import Artifact
from macsign.keychain import Identity, IdentityResolver
from macsign.orchestrator import SigningOrchestrator
from macsign.tools import ToolResult

TEAM = "ABCDE12345"
DEV_ID_APP = f"Developer ID Application: Jane Doe ({TEAM})"
MAC_DEV = f"Mac Developer: Jane Doe ({TEAM})"
MAS_APP = f"3rd Party Mac Developer Application: Jane Doe ({TEAM})"
MAS_INSTALLER = f"3rd Party Mac Developer Installer: Jane Doe ({TEAM})"


def ident(name, n=1):
    return Identity(name=name, sha1=f"{n:040X}")


class FakeIdentitySource:
    """Identities per keychain name; None is the default search list."""

    def __init__(self, by_keychain=None):
        self.by_keychain = by_keychain or {}
        self.calls = []

    async def list_identities(self, keychain):
        self.calls.append(keychain)
        return [dataclasses.replace(i, keychain=keychain) for i in self.by_keychain.get(keychain, [])]


class RecordingSigner:
    def __init__(self, fail=None):
        self.calls = []
        self.fail = fail

    async def sign(self, options):
        self.calls.append(options)
        if self.fail:
            raise self.fail


class RecordingFlattener:
    def __init__(self):
        self.calls = []

    async def flatten(self, app_path, identity, keychain, out_file, display_name):
        self.calls.append((app_path, identity, keychain, out_file))
        return Artifact(path=out_file, arch=None, display_name=display_name)


class FakeRunner:
    """Records commands; answers from a prefix -> ToolResult map."""

    def __init__(self, responses=None, fail_on=None):
        self.commands = []
        self.responses = responses or {}
        self.fail_on = fail_on

    async def run(self, cmd, timeout=None, check=True):
        cmd = [str(c) for c in cmd]
        self.commands.append(cmd)
        if self.fail_on and cmd[0] == self.fail_on:
            raise ExternalToolFailure(cmd, 1, f"{self.fail_on}: resource fork, Finder information, or similar detritus not allowed")
        stdout = ""
        for prefix, out in self.responses.items():
            if " ".join(cmd).startswith(prefix):
                stdout = out
        return ToolResult(cmd, 0, stdout, "")


def make_config(tmp_path, **kwargs):
    values = dict(
        product_name="My App",
        product_filename="MyApp",
        version="1.2.3",
        build_resources=tmp_path / "build",
        output=tmp_path / "dist",
    )
    values.update(kwargs)
    return BuildConfig(**values)


def mac(**raw):
    return MacOptions.from_dict(raw)


@pytest.fixture
def resources(tmp_path):
    path = tmp_path / "build"
    path.mkdir()
    return path


@pytest.fixture
def artifacts():
    return []


@pytest.fixture
def make_orchestrator(artifacts):
    def factory(config, identities=None, signer=None, flattener=None, platform="darwin", auto_discovery=True):
        source = FakeIdentitySource({config.keychain: identities or []})
        resolver = IdentityResolver(source, auto_discovery=auto_discovery)
        orchestrator = SigningOrchestrator(
            config, resolver, signer or RecordingSigner(), flattener or RecordingFlattener(),
            host_platform=platform, on_artifact=artifacts.append,
        )
        orchestrator.source = source
        return orchestrator
    return factory
