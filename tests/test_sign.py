import asyncio
import os

import pytest

from conftest import DEV_ID_APP, MAS_APP, FakeRunner
from macsign.errors import ExternalToolFailure, IdentityNotFound
from macsign.sign import CodesignSigner, CommandSigner, SignOptions, collect_nested_code

MACHO_HEADER = b"\xcf\xfa\xed\xfe" + b"\x00" * 12


def make_app(tmp_path):
    app = tmp_path / "MyApp.app"
    macos = app / "Contents" / "MacOS"
    frameworks = app / "Contents" / "Frameworks"
    helper = frameworks / "MyApp Helper.app" / "Contents" / "MacOS"
    for d in (macos, frameworks, helper):
        d.mkdir(parents=True)
    (macos / "MyApp").write_bytes(MACHO_HEADER)
    (frameworks / "libffi.dylib").write_bytes(MACHO_HEADER)
    (helper / "MyApp Helper").write_bytes(MACHO_HEADER)
    os.chmod(helper / "MyApp Helper", 0o755)
    script = app / "Contents" / "Resources" / "run.sh"
    script.parent.mkdir()
    script.write_text("#!/bin/sh\n")
    os.chmod(script, 0o755)
    return app


def test_sign_args_round_trip():
    options = SignOptions(
        identity=MAS_APP,
        type="distribution",
        platform="mas",
        version="1.2.3",
        app="/out/mas/My App.app",
        keychain="/tmp/build.keychain",
        gatekeeper_assess=True,
        entitlements="/project/build/entitlements.mas.plist",
        entitlements_inherit="/project/build/entitlements.mas.inherit.plist",
    )
    assert SignOptions.from_args(options.to_args()) == options


def test_sign_args_round_trip_without_optional_fields():
    options = SignOptions(identity="Acme Code Signing", type="development", platform="darwin",
                          version="2.0.0", app="out/mac/MyApp.app")
    args = options.to_args()
    assert "--no-gatekeeper-assess" in args
    assert not any(a.startswith("--keychain") or a.startswith("--entitlements") for a in args)
    assert SignOptions.from_args(args) == options


def test_collect_nested_code_deepest_first(tmp_path):
    app = make_app(tmp_path)
    nested = [p.relative_to(app).as_posix() for p in collect_nested_code(app)]
    assert nested == [
        "Contents/Frameworks/MyApp Helper.app/Contents/MacOS/MyApp Helper",
        "Contents/Frameworks/MyApp Helper.app",
        "Contents/Frameworks/libffi.dylib",
    ]


def test_codesign_signer_darwin(tmp_path):
    app = make_app(tmp_path)
    runner = FakeRunner()
    options = SignOptions(identity=DEV_ID_APP, type="distribution", platform="darwin", version="1.0.0",
                          app=str(app), keychain="build.keychain", gatekeeper_assess=True,
                          entitlements="app.plist", entitlements_inherit="child.plist")
    asyncio.run(CodesignSigner(runner).sign(options))

    codesigns = [c for c in runner.commands if c[:2] == ["codesign", "--sign"]]
    assert len(codesigns) == 4
    assert codesigns[-1][-1] == str(app)
    assert codesigns[-1][-3:-1] == ["--entitlements", "app.plist"]
    assert codesigns[0][-3:-1] == ["--entitlements", "child.plist"]
    for cmd in codesigns:
        assert ["--keychain", "build.keychain"] == cmd[cmd.index("--keychain"):cmd.index("--keychain") + 2]
        assert "runtime" in cmd
        assert "--timestamp" in cmd
    assert runner.commands[-1][0] == "spctl"


def test_codesign_signer_mas_development(tmp_path):
    app = make_app(tmp_path)
    runner = FakeRunner()
    options = SignOptions(identity=MAS_APP, type="development", platform="mas", version="1.0.0",
                          app=str(app), gatekeeper_assess=True)
    asyncio.run(CodesignSigner(runner).sign(options))

    assert all("runtime" not in c and "--timestamp=none" in c
               for c in runner.commands if c[:2] == ["codesign", "--sign"])
    assert not any(c[0] == "spctl" for c in runner.commands)


def test_codesign_signer_validates_identity_when_asked(tmp_path):
    app = make_app(tmp_path)
    runner = FakeRunner({"security find-identity": '  1) 00 "Someone Else"\n'})
    options = SignOptions(identity=DEV_ID_APP, type="distribution", platform="darwin", version="1.0.0",
                          app=str(app), skip_identity_validation=False)
    with pytest.raises(IdentityNotFound):
        asyncio.run(CodesignSigner(runner).sign(options))
    assert not any(c[0] == "codesign" for c in runner.commands)


def test_codesign_failure_is_reported_with_tool_output(tmp_path):
    app = make_app(tmp_path)
    options = SignOptions(identity=DEV_ID_APP, type="distribution", platform="darwin", version="1.0.0",
                          app=str(app))
    with pytest.raises(ExternalToolFailure) as exc:
        asyncio.run(CodesignSigner(FakeRunner(fail_on="codesign")).sign(options))
    assert "detritus not allowed" in str(exc.value)


def test_command_signer_passes_argument_form():
    runner = FakeRunner()
    options = SignOptions(identity=DEV_ID_APP, type="distribution", platform="darwin", version="1.0.0",
                          app="MyApp.app")
    asyncio.run(CommandSigner("npx electron-osx-sign", runner).sign(options))
    assert runner.commands == [["npx", "electron-osx-sign"] + options.to_args()]


def test_sign_args_round_trip_app_path_starting_with_dash():
    options = SignOptions(identity=DEV_ID_APP, type="distribution", platform="darwin", version="1.0.0",
                          app="-out/My.app")
    args = options.to_args()
    assert args[-2:] == ["--", "-out/My.app"]
    assert SignOptions.from_args(args) == options
