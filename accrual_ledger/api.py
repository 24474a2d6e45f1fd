"""
FastAPI REST API Module

Provides REST API endpoints for the interest-accruing ledger and its escrow
vault: deposits, redemptions, transfers, settlement, rate administration and
audit verification. Runs on port 8091 by default.

Amounts travel as decimal strings because they can exceed the range JSON
numbers handle reliably.
"""

from datetime import datetime, timezone
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .accounts import AccountLedger
from .audit import AuditTrail
from .clock import AccrualClock, SystemClock
from .config import AccrualLedgerConfig, get_config
from .errors import InvalidAmountError, LedgerError, PolicyViolationError, RedeemFailedError
from .events import EventDispatcher
from .fixed_point import MAX_AMOUNT
from .ledger import InterestAccruingLedger
from .logging_config import setup_logging
from .policy import InterestPolicy, RateDirection
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .vault import AssetCustody, EscrowVault, InMemoryCustody


# Pydantic models for API requests
class VaultRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Integer amount as decimal string")


class RedeemRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Integer amount as decimal string, or 'max'")


class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: str = Field(..., description="Integer amount as decimal string, or 'max'")


class SetRateRequest(BaseModel):
    rate: str = Field(..., description="Per-second rate scaled by 1e18, as decimal string")
    actor: Optional[str] = None


def parse_amount(value: str, allow_max: bool = False) -> int:
    """Parse a decimal string amount; 'max' maps to MAX_AMOUNT when allowed"""
    text = value.strip()
    if allow_max and text.lower() == "max":
        return MAX_AMOUNT
    if not text.isdecimal():
        raise InvalidAmountError(value, "amount must be a decimal integer string")
    return int(text)


def error_status(error: LedgerError) -> int:
    """HTTP status for a rejected ledger operation"""
    if isinstance(error, PolicyViolationError):
        return 409
    if isinstance(error, RedeemFailedError):
        return 502
    return 400


# Ledger System Context
class LedgerSystem:
    """Ledger, policy and vault wired onto one storage backend"""

    def __init__(
        self,
        config: Optional[AccrualLedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[AccrualClock] = None,
        custody: Optional[AssetCustody] = None
    ):
        self.config = config or get_config()

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.storage_backend == "sqlite":
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.clock = clock or SystemClock()

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.event_dispatcher = EventDispatcher()
        self.policy = InterestPolicy(
            self.storage,
            initial_rate=self.config.initial_global_rate,
            direction=RateDirection(self.config.rate_direction)
        )
        self.accounts = AccountLedger(self.storage)
        self.ledger = InterestAccruingLedger(
            self.storage,
            self.policy,
            self.audit_trail,
            clock=self.clock,
            accounts=self.accounts,
            event_dispatcher=self.event_dispatcher,
            address=self.config.ledger_address,
            repin_rate_on_mint=self.config.repin_rate_on_mint
        )
        self.custody = custody or InMemoryCustody(self.storage)
        self.vault = EscrowVault(self.ledger, self.custody)


_ledger_system: Optional[LedgerSystem] = None
_ledger_system_lock = threading.Lock()


# Dependency to get ledger system
def get_ledger_system() -> LedgerSystem:
    """Shared LedgerSystem, built once even under concurrent first requests"""
    global _ledger_system
    if _ledger_system is None:
        with _ledger_system_lock:
            if _ledger_system is None:
                _ledger_system = LedgerSystem()
    return _ledger_system


# Create FastAPI app
app = FastAPI(
    title="Accrual Ledger API",
    description="Interest-accruing balance ledger with an escrow vault",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/ledger")
async def get_ledger(system: LedgerSystem = Depends(get_ledger_system)):
    """Ledger-wide figures"""
    return {
        "address": system.vault.rebase_token_address(),
        "global_rate": str(system.ledger.global_rate()),
        "rate_direction": system.policy.direction.value,
        "total_supply": str(system.ledger.total_supply()),
        "reserves": str(system.vault.reserves())
    }


# Account Endpoints
@app.get("/accounts/{account_id}")
async def get_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account balances; unknown accounts read as empty"""
    snapshot = system.ledger.account_snapshot(account_id)
    return {
        "account_id": account_id,
        "principal": str(snapshot["principal"]),
        "effective_balance": str(snapshot["effective_balance"]),
        "rate": str(snapshot["assigned_rate"]),
        "last_settled_at": snapshot["last_settled_at"]
    }


@app.post("/accounts/{account_id}/settle")
async def settle_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Realize accrued interest into principal"""
    try:
        realized = system.ledger.settle(account_id)
        return {
            "account_id": account_id,
            "realized": str(realized),
            "principal": str(system.ledger.principal_balance_of(account_id))
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


# Vault Endpoints
@app.post("/vault/deposit")
async def deposit(
    request: VaultRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deposit external value and mint it"""
    try:
        minted = system.vault.deposit(request.account_id, parse_amount(request.amount))
        return {
            "account_id": request.account_id,
            "amount": str(minted),
            "message": "Deposit processed successfully"
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


@app.post("/vault/redeem")
async def redeem(
    request: RedeemRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Burn and release external value"""
    try:
        redeemed = system.vault.redeem(
            request.account_id, parse_amount(request.amount, allow_max=True)
        )
        return {
            "account_id": request.account_id,
            "amount": str(redeemed),
            "message": "Redeem processed successfully"
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


@app.post("/vault/rewards")
async def fund_rewards(
    request: VaultRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Fund the reserves that pay out realized interest"""
    try:
        funded = system.vault.fund_rewards(request.account_id, parse_amount(request.amount))
        return {
            "account_id": request.account_id,
            "amount": str(funded),
            "reserves": str(system.vault.reserves())
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


# Transfer Endpoints
@app.post("/transfers")
async def transfer(
    request: TransferRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Move balance between accounts"""
    try:
        moved = system.ledger.transfer(
            request.from_account_id,
            request.to_account_id,
            parse_amount(request.amount, allow_max=True)
        )
        return {
            "from_account_id": request.from_account_id,
            "to_account_id": request.to_account_id,
            "amount": str(moved),
            "message": "Transfer processed successfully"
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


# Administration Endpoints
@app.put("/admin/rate")
async def set_rate(
    request: SetRateRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Change the global rate within the rate policy"""
    try:
        text = request.rate.strip()
        if not text.isdecimal():
            raise HTTPException(status_code=400, detail=f"Invalid rate {request.rate!r}")

        change = system.ledger.set_rate(int(text), actor=request.actor)
        return {
            "old_rate": str(change.old_rate),
            "new_rate": str(change.new_rate),
            "direction": system.policy.direction.value
        }

    except LedgerError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


# Audit Endpoints
@app.get("/audit/verify")
async def verify_audit_integrity(
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Verify audit trail integrity"""
    return system.audit_trail.verify_integrity()


# Run server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format)
    uvicorn.run(
        "accrual_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
