"""Contact capability shared by every transport."""

from typing import Protocol, runtime_checkable

from escalator.models.plan import ContactMethod, DispatchOutcome


@runtime_checkable
class ContactAction(Protocol):
    """Something that can contact a recipient on behalf of a plan.

    Implementations must not raise for transport problems; they report them
    through an unsuccessful ``DispatchOutcome``.
    """

    method: ContactMethod

    async def perform(
        self,
        recipient: str,
        content: str,
        plan_id: str,
        requires_ack: bool = True
    ) -> DispatchOutcome:
        ...
