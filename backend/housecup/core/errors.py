"""
Domain errors raised by the election and attendance services.

Each error carries a stable ``code`` for clients, the HTTP status the API
layer answers with, and an ``outcome``:

* ``no_effect``: the request changed nothing; repeating it is safe.
* ``already_applied``: an equivalent action already succeeded (possibly from
  another tab or a retried request); do not blindly repeat it.
"""

from __future__ import annotations

from typing import Literal

Outcome = Literal["no_effect", "already_applied"]


class ElectionError(Exception):
    code = "election_error"
    status_code = 400
    outcome: Outcome = "no_effect"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail, "outcome": self.outcome}


class NotFound(ElectionError):
    code = "not_found"
    status_code = 404


class InvalidTransition(ElectionError):
    code = "invalid_transition"
    status_code = 409


class InvalidRequest(ElectionError):
    code = "invalid_request"
    status_code = 400


class AlreadyVoted(ElectionError):
    code = "already_voted"
    status_code = 409
    outcome = "already_applied"


class DuplicateNomination(ElectionError):
    code = "duplicate_nomination"
    status_code = 409
    outcome = "already_applied"


class NominationNotApproved(ElectionError):
    code = "nomination_not_approved"
    status_code = 409


class NoApprovedNominations(ElectionError):
    code = "no_approved_nominations"
    status_code = 409


class VotingClosed(ElectionError):
    code = "voting_closed"
    status_code = 409


class VotingStillOpen(ElectionError):
    code = "voting_still_open"
    status_code = 409


class HouseRequired(ElectionError):
    code = "house_required"
    status_code = 400


class HouseMismatch(ElectionError):
    code = "house_mismatch"
    status_code = 403


class Unauthorized(ElectionError):
    code = "forbidden"
    status_code = 403


__all__ = [
    "AlreadyVoted",
    "DuplicateNomination",
    "ElectionError",
    "HouseMismatch",
    "HouseRequired",
    "InvalidRequest",
    "InvalidTransition",
    "NoApprovedNominations",
    "NominationNotApproved",
    "NotFound",
    "Unauthorized",
    "VotingClosed",
    "VotingStillOpen",
]
