"""Input validation for fleet scans.

Everything here raises ``DataValidationException`` and runs before any batch
work is scheduled.
"""

import re
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..core.exceptions import DataValidationException
from .vm_models import VMDescriptor

VM_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
VM_NAME_MAX_LENGTH = 64
SUBSCRIPTION_ID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def validate_vm_name(vm_name: Any) -> str:
    """Return the trimmed VM name, or raise if it is not a plausible Azure VM name (FQDNs allowed)."""
    if not isinstance(vm_name, str) or not vm_name.strip():
        raise DataValidationException("vm_name", vm_name, "must be a non-empty string")

    name = vm_name.strip()
    if len(name) > VM_NAME_MAX_LENGTH:
        raise DataValidationException(
            "vm_name", vm_name, f"invalid length {len(name)} (must be 1-{VM_NAME_MAX_LENGTH})"
        )
    if not VM_NAME_PATTERN.match(name):
        raise DataValidationException("vm_name", vm_name, f"invalid format: {name}")
    return name


def validate_subscription_id(subscription_id: Optional[str]) -> Optional[str]:
    if subscription_id is None or subscription_id == "":
        return None
    if not isinstance(subscription_id, str) or not SUBSCRIPTION_ID_PATTERN.match(subscription_id.strip()):
        raise DataValidationException("subscription_id", subscription_id, "must be a GUID")
    return subscription_id.strip()


def validate_window_days(days: Any, max_days: int = 90) -> int:
    try:
        value = int(days)
    except (TypeError, ValueError):
        raise DataValidationException("scan_window_days", days, f"must be between 1 and {max_days} days")
    if isinstance(days, float) and not days.is_integer():
        raise DataValidationException("scan_window_days", days, "must be a whole number of days")
    if value < 1 or value > max_days:
        raise DataValidationException("scan_window_days", days, f"must be between 1 and {max_days} days")
    return value


def validate_fleet(fleet: Iterable[Union[VMDescriptor, Mapping[str, Any]]]) -> List[VMDescriptor]:
    """Coerce inventory records to descriptors and reject empty fleets, bad names and duplicates."""
    if fleet is None:
        raise DataValidationException("fleet", fleet, "fleet must be a list of VMs")

    descriptors: List[VMDescriptor] = []
    seen = set()
    for index, item in enumerate(fleet):
        if isinstance(item, VMDescriptor):
            vm = item
        else:
            try:
                vm = VMDescriptor.model_validate(item)
            except ValidationError as e:
                raise DataValidationException(f"fleet[{index}]", item, str(e)) from e

        name = validate_vm_name(vm.vm_name)
        if name != vm.vm_name:
            vm = vm.model_copy(update={"vm_name": name})
        if vm.subscription_id:
            validate_subscription_id(vm.subscription_id)

        if vm.key in seen:
            raise DataValidationException("fleet", vm.vm_name, "duplicate VM name in fleet")
        seen.add(vm.key)
        descriptors.append(vm)

    if not descriptors:
        raise DataValidationException("fleet", [], "fleet must contain at least one VM")
    return descriptors
