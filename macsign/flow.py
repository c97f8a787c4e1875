"""
Packaging flow: splits the requested targets into signing passes and drives
bundle -> sign -> flatten for each of them.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from .config import STORE_TARGETS, BuildConfig, BuildVariant, MacOptions
from .console import log_error, log_step
from .errors import BuildFailed, ConfigError, PassCrashed, SigningError
from .flatten import Artifact
from .orchestrator import PassReport, SignState, SigningOrchestrator

DEFAULT_TARGETS = ("zip", "dmg")
DIRECT_PASS = "mac"


@dataclass(frozen=True)
class PassPlan:
    name: str
    variant: BuildVariant
    app_out_dir: Path
    options: MacOptions

    @property
    def platform_name(self) -> str:
        return self.variant.platform


class Bundler(Protocol):
    async def pack(self, app_out_dir: Path, platform_name: str, options: MacOptions) -> None:
        ...


class ExistingBundle:
    """Bundler for bundles assembled by an earlier build step: only checks they exist."""

    def __init__(self, product_filename: str):
        self.product_filename = product_filename

    async def pack(self, app_out_dir: Path, platform_name: str, options: MacOptions) -> None:
        app = Path(app_out_dir) / f"{self.product_filename}.app"
        if not app.is_dir():
            raise ConfigError(f"App bundle not found: {app}")


def partition_targets(targets: Iterable[str]) -> Tuple[bool, List[str]]:
    """Return (needs direct pass, store targets in request order)."""
    targets = list(dict.fromkeys(targets)) or list(DEFAULT_TARGETS)
    store = [t for t in targets if t in STORE_TARGETS]
    return (not store or len(targets) > 1), store


def plan_passes(config: BuildConfig, targets: Iterable[str], out_dir: Path,
                prepackaged: Optional[Path] = None) -> List[PassPlan]:
    """Plan the signing passes. Store passes come first, the direct pass last."""
    direct, store = partition_targets(targets)
    plans = []
    for target in store:
        variant = BuildVariant.from_target(target)
        plans.append(PassPlan(target, variant, prepackaged or out_dir / target,
                              config.options_for(variant)))
    if direct:
        plans.append(PassPlan(DIRECT_PASS, BuildVariant.DIRECT, prepackaged or out_dir / DIRECT_PASS,
                              config.options_for(BuildVariant.DIRECT)))
    return plans


@dataclass
class BuildReport:
    passes: List[PassReport] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(p.failed for p in self.passes)

    @property
    def errors(self) -> List[SigningError]:
        return [p.error for p in self.passes if p.error is not None]

    @property
    def artifacts(self) -> List[Artifact]:
        return [a for p in self.passes for a in p.artifacts]

    def check(self) -> "BuildReport":
        if self.failed:
            raise BuildFailed(self.errors)
        return self


class PackagingFlowController:
    """Runs one signing pass per distribution channel.

    Passes are independent and run concurrently, except when they all sign the
    same prepackaged bundle, in which case they run one after another. A fatal
    pass does not cancel its siblings; the build report collects every outcome.
    """

    def __init__(self, config: BuildConfig, orchestrator: SigningOrchestrator,
                 bundler: Optional[Bundler] = None, prepackaged=None, out_dir=None):
        self.config = config
        self.orchestrator = orchestrator
        self.bundler = bundler or ExistingBundle(config.product_filename)
        self.prepackaged = Path(prepackaged) if prepackaged else None
        self.out_dir = Path(out_dir) if out_dir else config.output

    async def run(self, targets: Sequence[str] = ()) -> BuildReport:
        plans = plan_passes(self.config, targets, self.out_dir, self.prepackaged)
        if self.prepackaged is not None:
            results = []
            for plan in plans:
                results.append(await self.run_pass(plan))
        else:
            results = await asyncio.gather(*(self.run_pass(p) for p in plans))
        return BuildReport(list(results))

    async def run_pass(self, plan: PassPlan) -> PassReport:
        report = PassReport(plan.name, plan.variant)
        try:
            if self.prepackaged is None:
                log_step(f"Packaging {self.config.product_name} ({plan.name})")
                await self.bundler.pack(plan.app_out_dir, plan.platform_name, plan.options)
            await self.orchestrator.sign(report, plan.app_out_dir, plan.options)
        except SigningError as e:
            if report.error is None:
                report.error = e
                report.enter(SignState.FATAL)
            log_error(f"{plan.name}: {e}")
        except Exception as e:
            error = PassCrashed(plan.name, e)
            report.error = error
            report.enter(SignState.FATAL)
            log_error(str(error))
        return report
