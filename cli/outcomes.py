from dataclasses import dataclass
import enum
import json

from dataclasses_json import DataClassJsonMixin

import constants
from context import ProvisioningContext
import homefiles


class OutcomeState(enum.Enum):
    ALREADY_PRESENT = "already-present"
    INSTALLED = "installed"
    SKIPPED = "skipped"


@dataclass
class InstallOutcome(DataClassJsonMixin):
    name: str
    state: OutcomeState
    method_index: int | None = None  # 1-based, only for INSTALLED
    method_label: str | None = None
    detail: str = ""

    def describe(self) -> str:
        match self.state:
            case OutcomeState.ALREADY_PRESENT:
                return "already present"
            case OutcomeState.INSTALLED:
                return f"installed via method {self.method_index} ({self.method_label})"
            case OutcomeState.SKIPPED:
                return f"skipped: {self.detail}" if self.detail else "skipped"


class ProvisioningRecord:
    """The most recent outcome for each dependency, persisted in the target's home.

    Purely informational: presence checks never consult it, so a stale or
    deleted record cannot make provisioning skip real work.
    """

    def __init__(self, ctx: ProvisioningContext):
        self.ctx = ctx
        self.path = ctx.record_path
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._outcomes = {k: InstallOutcome.from_dict(v) for k, v in raw.items()}
        except (OSError, ValueError, KeyError):
            self._outcomes = {}

    def save(self):
        homefiles.ensure_target_dir(self.ctx, self.path.parent)
        data = {k: v.to_dict(encode_json=True) for k, v in self._outcomes.items()}
        homefiles.install_file_atomically(
            self.ctx,
            self.path,
            json.dumps(data, indent=2, sort_keys=True) + "\n",
            mode=constants.CONFIG_FILE_MODE,
        )

    def note(self, outcome: InstallOutcome):
        had = self._outcomes.get(outcome.name)
        # "Still there" is not news; keep the record of how it got there.
        if (
            had is not None
            and had.state != OutcomeState.SKIPPED
            and outcome.state == OutcomeState.ALREADY_PRESENT
        ):
            return
        self._outcomes[outcome.name] = outcome
        if had != outcome:
            self.save()

    def query(self, name: str) -> InstallOutcome | None:
        return self._outcomes.get(name)
