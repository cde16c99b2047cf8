"""Task lifecycle and escrow settlement: all marketplace business logic lives here."""

from __future__ import annotations

import base64
import binascii
import contextlib
import re
from typing import TYPE_CHECKING, Any, cast

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger
from bounty_market_service.services.clock import ms_to_iso
from bounty_market_service.services.index_audit import diff_index, rebuild_indices
from bounty_market_service.services.indexed_set import DuplicateMemberError, KeyNotFoundError
from bounty_market_service.services.payout_coordinator import OutboundBatch, ProfileUpdate
from bounty_market_service.services.submission_ledger import DuplicateSubmissionError
from bounty_market_service.services.task_states import (
    ALL_STATUSES,
    COMPLETED,
    FOR_EVERYONE,
    INVITE_ONLY,
    OPEN,
    PAYED,
    PENDING,
    REFUNDABLE_STATUSES,
    TASK_TYPES,
    check_transition,
    initial_status,
    live_invitees,
)
from bounty_market_service.services.task_store import DuplicateTaskError
from bounty_market_service.services.token_validator import decode_unverified_jws

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from bounty_market_service.clients.company_registry_client import CompanyRegistryClient
    from bounty_market_service.services.deadline_evaluator import Clock, DeadlineEvaluator
    from bounty_market_service.services.escrow_accountant import EscrowAccountant, Settlement
    from bounty_market_service.services.indexed_set import IndexedSetStore
    from bounty_market_service.services.payout_coordinator import PayoutCoordinator
    from bounty_market_service.services.task_store import TaskStore

# Content references are identified by a SHA-256 digest
HASH_LENGTH_BYTES = 32

_TASK_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# 9999-12-31T23:59:59.999Z, the last instant datetime can render
MAX_TIMESTAMP_MS = 253_402_300_799_999


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return _is_int(value) and cast("int", value) > 0


def _is_non_negative_int(value: object) -> bool:
    return _is_int(value) and cast("int", value) >= 0


def _is_timestamp(value: object) -> bool:
    return _is_non_negative_int(value) and cast("int", value) <= MAX_TIMESTAMP_MS


def validate_hash(value: object, field_name: str) -> str:
    """Require a base64 string that decodes to exactly HASH_LENGTH_BYTES bytes."""
    if not isinstance(value, str) or not value:
        raise ServiceError(
            "INVALID_HASH",
            f"{field_name} must be a base64-encoded {HASH_LENGTH_BYTES}-byte hash",
            400,
            {"field": field_name},
        )
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ServiceError(
            "INVALID_HASH",
            f"{field_name} is not valid base64",
            400,
            {"field": field_name},
        ) from exc
    if len(decoded) != HASH_LENGTH_BYTES:
        raise ServiceError(
            "INVALID_HASH",
            f"{field_name} must decode to exactly {HASH_LENGTH_BYTES} bytes",
            400,
            {"field": field_name, "length": len(decoded)},
        )
    return value


class TaskManager:
    """
    Runs the task lifecycle: creation, invitation acceptance, submission,
    deadline extension, pings, and escrow refunds.

    Every mutating call is one store transaction. Inside it the call pings
    the task (applying any due time-based transition), applies its own
    changes to the task and the indices, and asks the EscrowAccountant to
    settle the storage it grew against the deposit attached to the call.
    Any ServiceError raised before commit rolls the whole call back.
    Payouts collected along the way are dispatched after commit.

    A deposit is a caller-signed token the payment service verifies and
    locks before the transaction starts. Only the amount it confirms is
    settled; if the call then fails the whole amount goes straight back.
    """

    def __init__(
        self,
        store: TaskStore,
        company_registry_client: CompanyRegistryClient,
        payout_coordinator: PayoutCoordinator,
        escrow_accountant: EscrowAccountant,
        deadline_evaluator: DeadlineEvaluator,
        clock: Clock,
        token_kind: str,
        *,
        max_invitees: int,
        default_page_limit: int,
        max_page_limit: int,
        max_account_id_length: int,
        max_title_length: int,
        max_description_length: int,
    ) -> None:
        self._store = store
        self._company_registry_client = company_registry_client
        self._payouts = payout_coordinator
        self._escrow = escrow_accountant
        self._deadline_evaluator = deadline_evaluator
        self._clock = clock
        self._token_kind = token_kind
        self._max_invitees = max_invitees
        self._default_page_limit = default_page_limit
        self._max_page_limit = max_page_limit
        self._max_account_id_length = max_account_id_length
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._logger = get_logger(__name__)

    def set_company_registry_client(self, client: CompanyRegistryClient) -> None:
        self._company_registry_client = client

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _task_to_response(self, task: dict[str, Any]) -> dict[str, Any]:
        """Convert a stored task to its API representation."""
        return {
            "task_id": task["task_id"],
            "company_id": task["company_id"],
            "title": task["title"],
            "description": task["description"],
            "required_skills": task["required_skills"],
            "task_type": task["task_type"],
            "invited_accounts": task["invited_accounts"],
            "valid_till": task["valid_till"],
            "reference": task["reference"],
            "reference_hash": task["reference_hash"],
            "deadline": task["deadline"],
            "person_assigned": task["person_assigned"],
            "status": task["status"],
            "token_kind": task["token_kind"],
            "reward": task["reward"],
            "created_at": task["created_at"],
            "submission_count": self._store.submissions.count(task["task_id"]),
            "deadline_at": ms_to_iso(task["deadline"]),
            "valid_till_at": ms_to_iso(task["valid_till"]),
        }

    def _resolve_page(self, offset: object, limit: object) -> tuple[int, int]:
        resolved_offset = 0 if offset is None else offset
        resolved_limit = self._default_page_limit if limit is None else limit
        if not _is_non_negative_int(resolved_offset):
            raise ServiceError("INVALID_PAGINATION", "offset must be >= 0", 400, {})
        if not _is_positive_int(resolved_limit):
            raise ServiceError("INVALID_PAGINATION", "limit must be >= 1", 400, {})
        if cast("int", resolved_limit) > self._max_page_limit:
            raise ServiceError(
                "INVALID_PAGINATION",
                f"limit must not exceed {self._max_page_limit}",
                400,
                {"max_limit": self._max_page_limit},
            )
        return cast("int", resolved_offset), cast("int", resolved_limit)

    async def _lock_deposit(self, caller_id: str, task_id: str, deposit_token: str | None) -> int:
        """
        Move the caller's deposit into the marketplace and return the confirmed amount.

        The token is signed by the caller and verified by the payment
        service. It is only decoded here to cross-check it against the call.
        No token means nothing is attached.
        """
        if deposit_token is None:
            return 0

        header, payload = decode_unverified_jws(deposit_token)
        if payload.get("action") != "deposit_lock":
            raise ServiceError(
                "TOKEN_MISMATCH",
                "Deposit token must carry action 'deposit_lock'",
                400,
                {},
            )
        if header.get("kid") != caller_id:
            raise ServiceError(
                "TOKEN_MISMATCH",
                "Deposit signer does not match the caller",
                400,
                {},
            )
        if payload.get("task_id") != task_id:
            raise ServiceError(
                "TOKEN_MISMATCH",
                "task_id mismatch between token and deposit_token",
                400,
                {},
            )
        amount = payload.get("amount")
        if not _is_positive_int(amount):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Deposit amount must be a positive integer",
                400,
                {},
            )

        confirmation = await self._payouts.lock_deposit(deposit_token)
        confirmed = confirmation.get("amount")
        if confirmation.get("task_id") != task_id or not _is_positive_int(confirmed):
            self._logger.error(
                "Unusable deposit confirmation",
                extra={"task_id": task_id, "account_id": caller_id, "confirmation": confirmation},
            )
            raise ServiceError(
                "PAYMENTS_UNAVAILABLE",
                "Payment service returned an unexpected deposit confirmation",
                502,
                {},
            )
        if confirmed != amount:
            self._logger.warning(
                "Confirmed deposit differs from the signed amount",
                extra={"task_id": task_id, "signed": amount, "confirmed": confirmed},
            )
        return cast("int", confirmed)

    @contextlib.asynccontextmanager
    async def _holding_deposit(
        self, caller_id: str, task_id: str, amount: int
    ) -> AsyncIterator[None]:
        """Send a locked deposit straight back if the call fails."""
        try:
            yield
        except Exception:
            batch = OutboundBatch()
            batch.pay(caller_id, amount, self._token_kind, task_id, "deposit_return")
            await self._payouts.dispatch(batch)
            raise

    def _validate_task_id(self, task_id: object, company_id: str) -> str:
        """Task identifiers are ``<company prefix>.<name>``, scoped to the owning company."""
        if not isinstance(task_id, str):
            raise ServiceError("INVALID_TASK_ID", "task_id must be a string", 400, {})
        prefix = company_id.split(".", maxsplit=1)[0]
        head, separator, name = task_id.partition(".")
        if separator == "" or head != prefix or not _TASK_NAME_RE.match(name):
            raise ServiceError(
                "INVALID_TASK_ID",
                f"task_id must have the form '{prefix}.<name>'",
                400,
                {"task_id": task_id, "company_id": company_id},
            )
        return task_id

    def _validate_account_id(self, account_id: object) -> str:
        """Any identifier the Identity service can issue, bounded by the invitee allowance."""
        if (
            not isinstance(account_id, str)
            or not account_id.strip()
            or len(account_id.encode()) > self._max_account_id_length
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "invited_accounts must contain valid account identifiers",
                400,
                {"account_id": account_id},
            )
        return account_id

    def _validate_details(self, details: object) -> dict[str, Any]:
        """Validate task details and return the columns they populate."""
        if not isinstance(details, dict):
            raise ServiceError("INVALID_PAYLOAD", "details must be a JSON object", 400, {})

        for field_name in ("title", "description", "required_skills", "task_type", "reference"):
            if field_name not in details:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"Missing required field: details.{field_name}",
                    400,
                    {},
                )

        title = details["title"]
        if not isinstance(title, str) or len(title) < 1:
            raise ServiceError("INVALID_PAYLOAD", "Title must be a non-empty string", 400, {})
        if len(title) > self._max_title_length:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Title must not exceed {self._max_title_length} characters",
                400,
                {},
            )

        description = details["description"]
        if not isinstance(description, str) or len(description) > self._max_description_length:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Description must be a string of at most {self._max_description_length} characters",
                400,
                {},
            )

        required_skills = details["required_skills"]
        if not isinstance(required_skills, str) or len(required_skills) < 1:
            raise ServiceError(
                "INVALID_PAYLOAD", "required_skills must be a non-empty string", 400, {}
            )

        reference = details["reference"]
        if not isinstance(reference, str) or len(reference) < 1:
            raise ServiceError("INVALID_PAYLOAD", "reference must be a non-empty string", 400, {})
        reference_hash = validate_hash(details.get("reference_hash"), "reference_hash")

        task_type = details["task_type"]
        if task_type not in TASK_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"task_type must be one of {sorted(TASK_TYPES)}",
                400,
                {},
            )

        invited_accounts: list[str] | None = None
        valid_till: int | None = None
        if task_type == INVITE_ONLY:
            raw_invited = details.get("invited_accounts")
            if not isinstance(raw_invited, list) or len(raw_invited) == 0:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    "Invite-only tasks need a non-empty invited_accounts list",
                    400,
                    {},
                )
            invited_accounts = sorted({self._validate_account_id(a) for a in raw_invited})
            if len(invited_accounts) > self._max_invitees:
                raise ServiceError(
                    "TOO_MANY_INVITEES",
                    f"At most {self._max_invitees} accounts may be invited",
                    400,
                    {"invitees": len(invited_accounts), "max_invitees": self._max_invitees},
                )
            raw_valid_till = details.get("valid_till")
            if not _is_timestamp(raw_valid_till):
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    "Invite-only tasks need valid_till as epoch milliseconds",
                    400,
                    {},
                )
            valid_till = cast("int", raw_valid_till)
        elif details.get("invited_accounts") is not None:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Tasks for everyone do not take invited_accounts",
                400,
                {},
            )

        return {
            "title": title,
            "description": description,
            "required_skills": required_skills,
            "task_type": task_type,
            "invited_accounts": invited_accounts,
            "valid_till": valid_till,
            "reference": reference,
            "reference_hash": reference_hash,
        }

    @staticmethod
    def _validate_submission(submission: object) -> dict[str, str]:
        if not isinstance(submission, dict):
            raise ServiceError("INVALID_PAYLOAD", "submission must be a JSON object", 400, {})
        reference = submission.get("submission_reference")
        if not isinstance(reference, str) or len(reference) < 1:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "submission_reference must be a non-empty string",
                400,
                {},
            )
        reference_hash = validate_hash(
            submission.get("submission_reference_hash"), "submission_reference_hash"
        )
        return {"submission_reference": reference, "submission_reference_hash": reference_hash}

    async def _require_whitelisted(self, company_id: str) -> None:
        try:
            whitelisted = await self._company_registry_client.is_whitelisted(company_id)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "COMPANY_REGISTRY_UNAVAILABLE",
                "Cannot connect to the company registry",
                502,
                {},
            ) from exc
        if not whitelisted:
            raise ServiceError(
                "NOT_WHITELISTED",
                "Only approved companies can post tasks",
                403,
                {"company_id": company_id},
            )

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("KEY_NOT_FOUND", "Task not found", 404, {"task_id": task_id})
        return task

    def _transition(self, task: dict[str, Any], target: str, **updates: Any) -> dict[str, Any]:
        current = task["status"]
        check_transition(current, target)
        changed = self._store.update_task(
            task["task_id"], {"status": target, **updates}, expected_status=current
        )
        if changed == 0:
            msg = f"Task {task['task_id']} changed state during the call"
            raise RuntimeError(msg)
        self._logger.info(
            "Task transitioned",
            extra={"task_id": task["task_id"], "from_status": current, "to_status": target},
        )
        return {**task, "status": target, **updates}

    @staticmethod
    def _index_add(index: IndexedSetStore, key: str, task_id: str) -> None:
        try:
            index.add(key, task_id)
        except DuplicateMemberError as exc:
            raise ServiceError(
                "DUPLICATE_MEMBER",
                f"{task_id} is already indexed under {key}",
                409,
                {"index": exc.table, "key": key, "task_id": task_id},
            ) from exc

    @staticmethod
    def _index_remove(index: IndexedSetStore, key: str, task_id: str) -> None:
        try:
            removed = index.remove(key, task_id)
        except KeyNotFoundError as exc:
            raise ServiceError(
                "KEY_NOT_FOUND",
                f"No index entry for {key}",
                404,
                {"index": exc.table, "key": key},
            ) from exc
        if not removed:
            raise ServiceError(
                "KEY_NOT_FOUND",
                f"{task_id} is not indexed under {key}",
                404,
                {"index": index.table, "key": key, "task_id": task_id},
            )

    def _refund_deposit(
        self, batch: OutboundBatch, caller_id: str, task_id: str, settlement: Settlement
    ) -> None:
        batch.pay(caller_id, settlement.refund, self._token_kind, task_id, "deposit_refund")

    # ------------------------------------------------------------------
    # Public methods, called by routers
    # ------------------------------------------------------------------

    async def create_task(
        self,
        caller_id: str,
        task_id: object,
        details: object,
        deadline: object,
        reward: object,
        deposit_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Post a new task and escrow its reward from the attached deposit.

        Error precedence:
        1. COMPANY_REGISTRY_UNAVAILABLE / NOT_WHITELISTED
        2. INVALID_TASK_ID, INVALID_PAYLOAD, INVALID_HASH, TOO_MANY_INVITEES
        3. ALREADY_EXISTS: task_id taken
        4. TOKEN_MISMATCH, INVALID_JWS: deposit token does not belong to this call
        5. INSUFFICIENT_FUNDS, PAYMENTS_UNAVAILABLE: deposit lock refused
        6. INSUFFICIENT_DEPOSIT: confirmed deposit below reward + storage
        """
        await self._require_whitelisted(caller_id)

        valid_task_id = self._validate_task_id(task_id, caller_id)
        fields = self._validate_details(details)
        if not _is_timestamp(deadline):
            raise ServiceError(
                "INVALID_PAYLOAD", "deadline must be epoch milliseconds", 400, {}
            )
        if not _is_positive_int(reward):
            raise ServiceError("INVALID_PAYLOAD", "Reward must be a positive integer", 400, {})
        reward_amount = cast("int", reward)

        if self._store.get_task(valid_task_id) is not None:
            raise ServiceError(
                "ALREADY_EXISTS",
                f"A task with task_id '{valid_task_id}' already exists",
                409,
                {"task_id": valid_task_id},
            )

        invited: list[str] = fields["invited_accounts"] or []
        task = {
            "task_id": valid_task_id,
            "company_id": caller_id,
            **fields,
            "deadline": cast("int", deadline),
            "person_assigned": None,
            "status": initial_status(fields["task_type"]),
            "token_kind": self._token_kind,
            "reward": reward_amount,
            "created_at": self._clock.now_ms(),
            "funded_bytes": 0,
        }

        deposit = await self._lock_deposit(caller_id, valid_task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, valid_task_id, deposit):
            with self._store.transaction():
                bytes_before = self._escrow.measure()
                try:
                    self._store.insert_task(task)
                except DuplicateTaskError as exc:
                    raise ServiceError(
                        "ALREADY_EXISTS",
                        f"A task with task_id '{valid_task_id}' already exists",
                        409,
                        {"task_id": valid_task_id},
                    ) from exc
                self._index_add(self._store.company_tasks, caller_id, valid_task_id)
                for account_id in invited:
                    self._index_add(self._store.invited_tasks, account_id, valid_task_id)
                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                    reserve=reward_amount,
                    surcharge_bytes=len(invited) * self._escrow.invitee_storage_bytes,
                )
                # Fixed-width column, so recording it does not change the meter
                self._store.update_task(valid_task_id, {"funded_bytes": settlement.billable_bytes})
                task["funded_bytes"] = settlement.billable_bytes
                self._refund_deposit(batch, caller_id, valid_task_id, settlement)

        self._logger.info(
            "Task created",
            extra={
                "task_id": valid_task_id,
                "company_id": caller_id,
                "task_type": fields["task_type"],
                "reward": reward_amount,
                "storage_bytes": settlement.billable_bytes,
            },
        )
        await self._payouts.dispatch(batch)
        return {"task": self._task_to_response(task), "settlement": settlement.to_dict()}

    async def extend_deadline(
        self,
        caller_id: str,
        task_id: str,
        new_deadline: object,
        deposit_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Push a task's deadline later.

        ``extended`` is False once the task has left Open/Pending. A new
        deadline that is not strictly later is ignored without error.
        """
        if not _is_timestamp(new_deadline):
            raise ServiceError(
                "INVALID_PAYLOAD", "new_deadline must be epoch milliseconds", 400, {}
            )
        requested = cast("int", new_deadline)

        deposit = await self._lock_deposit(caller_id, task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, task_id, deposit):
            with self._store.transaction():
                task = self._load_task(task_id)
                if task["company_id"] != caller_id:
                    raise ServiceError(
                        "FORBIDDEN",
                        "Only the owning company can extend the deadline",
                        403,
                        {"task_id": task_id},
                    )
                bytes_before = self._escrow.measure()
                task = self._deadline_evaluator.evaluate(task)

                extended = task["status"] in (OPEN, PENDING)
                if extended and requested > task["deadline"]:
                    self._store.update_task(task_id, {"deadline": requested})
                    task = {**task, "deadline": requested}
                    self._logger.info(
                        "Task deadline extended",
                        extra={"task_id": task_id, "deadline": requested},
                    )

                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                )
                self._refund_deposit(batch, caller_id, task_id, settlement)

        await self._payouts.dispatch(batch)
        return {"extended": extended, "task": self._task_to_response(task)}

    async def accept_invite(
        self, caller_id: str, task_id: str, deposit_token: str | None = None
    ) -> dict[str, Any]:
        """
        Assign an invite-only task to the invited caller and move it to Pending.

        The assignment is paid for out of the per-invitee allowance the
        company prepaid at creation. The other invitees lose their index
        entries since the invitation is moot for them.
        """
        deposit = await self._lock_deposit(caller_id, task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, task_id, deposit):
            with self._store.transaction():
                task = self._load_task(task_id)
                bytes_before = self._escrow.measure()
                task = self._deadline_evaluator.evaluate(task)

                if task["status"] != OPEN:
                    raise ServiceError(
                        "INVALID_STATE",
                        f"Cannot accept a task in '{task['status']}' state, must be '{OPEN}'",
                        409,
                        {"task_id": task_id, "status": task["status"]},
                    )
                if task["task_type"] != INVITE_ONLY or not self._store.invited_tasks.contains(
                    caller_id, task_id
                ):
                    raise ServiceError(
                        "NOT_INVITED",
                        "Caller was not invited to this task",
                        403,
                        {"task_id": task_id, "account_id": caller_id},
                    )

                task = self._transition(task, PENDING, person_assigned=caller_id)
                for account_id in task["invited_accounts"] or []:
                    if account_id != caller_id:
                        self._index_remove(self._store.invited_tasks, account_id, task_id)
                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                    prepaid_bytes=self._escrow.invitee_storage_bytes,
                )
                self._refund_deposit(batch, caller_id, task_id, settlement)

        await self._payouts.dispatch(batch)
        return {"task": self._task_to_response(task), "settlement": settlement.to_dict()}

    async def submit_work(
        self,
        caller_id: str,
        task_id: str,
        submission: object,
        deposit_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Record a submission.

        A Pending task becomes Completed. When the task has an assignee the
        reward is released in the same call and the task becomes Payed.
        Completed tasks for everyone keep accepting one submission per
        submitter so the company can pick among them.
        """
        entry = self._validate_submission(submission)

        deposit = await self._lock_deposit(caller_id, task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, task_id, deposit):
            with self._store.transaction():
                task = self._load_task(task_id)
                bytes_before = self._escrow.measure()
                task = self._deadline_evaluator.evaluate(task)
                status = task["status"]
                assignee = task["person_assigned"]

                if status == PENDING:
                    if assignee is not None and caller_id != assignee:
                        raise ServiceError(
                            "NOT_ASSIGNEE",
                            "Only the assigned account can submit work",
                            403,
                            {"task_id": task_id, "account_id": caller_id},
                        )
                    self._record_submission(task_id, caller_id, entry)
                    task = self._transition(task, COMPLETED)
                    if assignee is not None:
                        task = self._transition(task, PAYED)
                        batch.pay(assignee, task["reward"], task["token_kind"], task_id, "reward")
                        batch.profile_updates.append(
                            ProfileUpdate(user_id=assignee, task_id=task_id)
                        )
                elif status == COMPLETED and task["task_type"] == FOR_EVERYONE:
                    self._record_submission(task_id, caller_id, entry)
                else:
                    raise ServiceError(
                        "SUBMISSION_NOT_ALLOWED",
                        f"Cannot submit work to a task in '{status}' state",
                        409,
                        {"task_id": task_id, "status": status},
                    )

                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                )
                self._refund_deposit(batch, caller_id, task_id, settlement)

        self._logger.info(
            "Work submitted",
            extra={"task_id": task_id, "account_id": caller_id, "status": task["status"]},
        )
        await self._payouts.dispatch(batch)
        return {"task": self._task_to_response(task), "settlement": settlement.to_dict()}

    def _record_submission(self, task_id: str, account_id: str, entry: dict[str, str]) -> None:
        try:
            self._store.submissions.insert(task_id, account_id, entry)
        except DuplicateSubmissionError as exc:
            raise ServiceError(
                "DUPLICATE_SUBMISSION",
                "This account already submitted work for the task",
                409,
                {"task_id": task_id, "account_id": account_id},
            ) from exc

    async def ping_task(
        self, caller_id: str, task_id: str, deposit_token: str | None = None
    ) -> dict[str, Any]:
        """Apply any due time-based transition and persist it."""
        deposit = await self._lock_deposit(caller_id, task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, task_id, deposit):
            with self._store.transaction():
                task = self._load_task(task_id)
                bytes_before = self._escrow.measure()
                task = self._deadline_evaluator.evaluate(task)
                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                )
                self._refund_deposit(batch, caller_id, task_id, settlement)

        await self._payouts.dispatch(batch)
        return self._task_to_response(task)

    async def claim_refund(
        self, caller_id: str, task_id: str, deposit_token: str | None = None
    ) -> dict[str, Any]:
        """
        Remove an Expired or Overdue task and return its escrow to the company.

        The task, its submissions and every index entry still pointing at it
        are deleted. The company gets the reward back plus the value of the
        storage it funded at creation, which covers the invitee allowance
        and index entries already dropped on acceptance or expiry.
        """
        deposit = await self._lock_deposit(caller_id, task_id, deposit_token)
        batch = OutboundBatch()
        async with self._holding_deposit(caller_id, task_id, deposit):
            with self._store.transaction():
                task = self._load_task(task_id)
                if task["company_id"] != caller_id:
                    raise ServiceError(
                        "FORBIDDEN",
                        "Only the owning company can reclaim the escrow",
                        403,
                        {"task_id": task_id},
                    )
                bytes_before = self._escrow.measure()
                task = self._deadline_evaluator.evaluate(task)
                if task["status"] not in REFUNDABLE_STATUSES:
                    raise ServiceError(
                        "INVALID_STATE",
                        f"Cannot reclaim escrow of a task in '{task['status']}' state",
                        409,
                        {"task_id": task_id, "status": task["status"]},
                    )

                self._store.submissions.remove_all(task_id)
                self._index_remove(self._store.company_tasks, caller_id, task_id)
                for account_id in live_invitees(task):
                    self._index_remove(self._store.invited_tasks, account_id, task_id)
                self._store.delete_task(task_id)

                settlement = self._escrow.settle(
                    caller_id=caller_id,
                    deposit=deposit,
                    bytes_before=bytes_before,
                    bytes_after=self._escrow.measure(),
                    released=self._escrow.storage_value(task["funded_bytes"]),
                )
                batch.pay(caller_id, task["reward"], task["token_kind"], task_id, "escrow_refund")
                batch.pay(caller_id, settlement.refund, self._token_kind, task_id, "storage_refund")

        self._logger.info(
            "Escrow reclaimed",
            extra={
                "task_id": task_id,
                "company_id": caller_id,
                "status": task["status"],
                "reward": task["reward"],
                "storage_refund": settlement.refund,
            },
        )
        await self._payouts.dispatch(batch)
        return {
            "task_id": task_id,
            "status": task["status"],
            "reward_refund": task["reward"],
            "settlement": settlement.to_dict(),
        }

    # ------------------------------------------------------------------
    # Queries never ping, so they may lag one transition behind
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> dict[str, Any]:
        return self._task_to_response(self._load_task(task_id))

    async def list_tasks(self, offset: object = None, limit: object = None) -> dict[str, Any]:
        """List every task in creation order."""
        page_offset, page_limit = self._resolve_page(offset, limit)
        tasks = self._store.list_tasks(page_offset, page_limit)
        return {
            "tasks": [self._task_to_response(task) for task in tasks],
            "offset": page_offset,
            "limit": page_limit,
            "total": self._store.count_tasks(),
        }

    async def list_tasks_by_company(
        self, company_id: str, offset: object = None, limit: object = None
    ) -> dict[str, Any]:
        page_offset, page_limit = self._resolve_page(offset, limit)
        index = self._store.company_tasks
        task_ids = index.members(company_id, page_offset, page_limit)
        return {
            "company_id": company_id,
            "tasks": [self._task_to_response(task) for task in self._store.get_tasks(task_ids)],
            "offset": page_offset,
            "limit": page_limit,
            "total": index.count(company_id),
        }

    async def list_invited_tasks(
        self, user_id: str, offset: object = None, limit: object = None
    ) -> dict[str, Any]:
        page_offset, page_limit = self._resolve_page(offset, limit)
        index = self._store.invited_tasks
        task_ids = index.members(user_id, page_offset, page_limit)
        return {
            "account_id": user_id,
            "tasks": [self._task_to_response(task) for task in self._store.get_tasks(task_ids)],
            "offset": page_offset,
            "limit": page_limit,
            "total": index.count(user_id),
        }

    async def get_submission(self, task_id: str, account_id: str) -> dict[str, Any]:
        self._load_task(task_id)
        submission = self._store.submissions.get(task_id, account_id)
        if submission is None:
            raise ServiceError(
                "KEY_NOT_FOUND",
                "Submission not found",
                404,
                {"task_id": task_id, "account_id": account_id},
            )
        return submission

    async def list_submissions(
        self, task_id: str, offset: object = None, limit: object = None
    ) -> dict[str, Any]:
        page_offset, page_limit = self._resolve_page(offset, limit)
        self._load_task(task_id)
        ledger = self._store.submissions
        return {
            "task_id": task_id,
            "submissions": ledger.page(task_id, page_offset, page_limit),
            "offset": page_offset,
            "limit": page_limit,
            "total": ledger.count(task_id),
        }

    def verify_indices(self) -> dict[str, Any]:
        """Rebuild both indices from the task store and report drift from the stored ones."""
        with self._store.lock:
            derived = rebuild_indices(self._store.iter_tasks())
            company_drift = diff_index(derived.company_tasks, self._store.company_tasks.as_mapping())
            invited_drift = diff_index(derived.invited_tasks, self._store.invited_tasks.as_mapping())
        report = {
            "consistent": company_drift.consistent and invited_drift.consistent,
            "company_tasks": company_drift.to_dict(),
            "invited_tasks": invited_drift.to_dict(),
        }
        if not report["consistent"]:
            self._logger.error("Index drift detected", extra={"report": report})
        return report

    def get_stats(self) -> dict[str, Any]:
        """Task counts for the health endpoint."""
        counts = self._store.count_tasks_by_status()
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": {status: counts.get(status, 0) for status in ALL_STATUSES},
        }

    def close(self) -> None:
        self._store.close()
