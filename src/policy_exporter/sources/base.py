from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from ..model.records import Policy, PolicyParameter
from ..reconcile.reconciler import SourceMode

PolicyReader = Callable[[], List[Policy]]
PolicyParameterReader = Callable[[], List[PolicyParameter]]


@dataclass(frozen=True)
class PolicyDefinitionProvider:
    """
    One named source of policy definitions.
    A reader left as None means the source does not offer that kind of record.
    """

    name: str
    builtin_policies: Optional[PolicyReader] = None
    custom_policies: Optional[PolicyReader] = None
    policy_set_parameters: Optional[PolicyParameterReader] = None
    mode: SourceMode = SourceMode.MERGE
