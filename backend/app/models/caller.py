"""
Authenticated caller variants.

Every request to the mail API is made by exactly one of:

  EndUserCaller        a helpdesk agent with a Supabase session (Bearer JWT).
                         Subject to tenant-membership checks.
  TrustedSystemCaller  an internal service presenting X-Internal-Secret.
                         Bypasses membership checks but must name the user it
                         acts for (actingUserId) so the mailbox can be chosen.
"""

from typing import Literal, Optional, Union
from pydantic import BaseModel


class EndUserCaller(BaseModel):
    kind: Literal["end_user"] = "end_user"
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


class TrustedSystemCaller(BaseModel):
    kind: Literal["trusted_system"] = "trusted_system"


Caller = Union[EndUserCaller, TrustedSystemCaller]


class ActingUser(BaseModel):
    """The helpdesk user whose mailbox and identity a send uses."""

    user_id: str
    email: str = ""
    full_name: Optional[str] = None
