"""
RiddleBridge - Bridge Routes

Endpoints for the three-step bridge flow:
- Quote preview
- Step1: create the transaction and return deposit instructions
- Step2: verify the user's inbound payment
- Step3: send the quoted output to the destination address
- History, restart and receipts
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from riddlebridge.api.dependencies import OwnerDep, PipelineDep
from riddlebridge.api.schemas import (
    ChainsResponse,
    ChainView,
    DistributionResponse,
    QuoteRequest,
    QuoteResponse,
    RouteView,
    Step1Request,
    Step1Response,
    Step3Request,
    TokenView,
    TransactionListResponse,
    TransactionResponse,
    TransactionView,
    VerifyTransactionRequest,
    VerifyTransactionResponse,
)
from riddlebridge.errors import InvalidRouteError
from riddlebridge.models import (
    TOKEN_SPECS,
    BridgeStatus,
    BridgeTransaction,
    Chain,
    ExplorerLinkKind,
    Token,
    TransactionFilter,
    format_amount,
)
from riddlebridge.services import BridgePipeline, supported_routes

router = APIRouter()
logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 200


def parse_token(value: str | None) -> Token | None:
    return None if value is None else require_token(value)


def parse_chain(value: str | None) -> Chain | None:
    if value is None:
        return None
    try:
        return Chain(value.strip().lower())
    except ValueError:
        raise InvalidRouteError(f"Unsupported chain: {value}") from None


def require_token(value: str) -> Token:
    try:
        return Token(value.strip().upper())
    except ValueError:
        raise InvalidRouteError(f"Unsupported token: {value}") from None


def transaction_view(pipeline: BridgePipeline, txn: BridgeTransaction) -> TransactionView:
    return TransactionView.from_transaction(
        txn,
        inbound_explorer_url=pipeline.explorer_url(txn, ExplorerLinkKind.INBOUND),
        outbound_explorer_url=pipeline.explorer_url(txn, ExplorerLinkKind.OUTBOUND),
    )


# =============================================================================
# Quote and Step1
# =============================================================================


@router.post("/quote", response_model=QuoteResponse, response_model_by_alias=True)
async def quote(body: QuoteRequest, pipeline: PipelineDep, owner_id: OwnerDep) -> QuoteResponse:
    """Preview fee and output for a route without creating anything."""
    result = await pipeline.quote(
        require_token(body.from_token),
        require_token(body.to_token),
        body.amount,
        source_chain=parse_chain(body.from_chain),
        destination_chain=parse_chain(body.to_chain),
    )
    return QuoteResponse(
        from_token=result.route.source_token.value,
        to_token=result.route.destination_token.value,
        from_chain=result.route.source_chain.value,
        to_chain=result.route.destination_chain.value,
        amount=format_amount(result.amount_in),
        bridge_fee=format_amount(result.fee_amount),
        exchange_rate=format_amount(result.exchange_rate),
        estimated_output=format_amount(result.amount_out),
    )


@router.get("/chains", response_model=ChainsResponse, response_model_by_alias=True)
async def list_chains(pipeline: PipelineDep, owner_id: OwnerDep) -> ChainsResponse:
    """Configured chains with their tokens and bank wallets, and the routes between them."""
    configured = pipeline.chains.chains
    chains = [
        ChainView(
            chain=chain.value,
            tokens=[
                TokenView(token=spec.token.value, decimals=spec.decimals, native=spec.native)
                for spec in TOKEN_SPECS.values()
                if spec.chain == chain
            ],
            bank_wallet_address=pipeline.chains.bank_wallet_for(chain),
        )
        for chain in configured
    ]
    routes = [
        RouteView(
            from_token=route.source_token.value,
            to_token=route.destination_token.value,
            from_chain=route.source_chain.value,
            to_chain=route.destination_chain.value,
        )
        for route in supported_routes()
        if route.source_chain in configured and route.destination_chain in configured
    ]
    return ChainsResponse(chains=chains, routes=routes, total_chains=len(chains))


@router.post("/step1", response_model=Step1Response, response_model_by_alias=True)
async def step1(body: Step1Request, pipeline: PipelineDep, owner_id: OwnerDep) -> Step1Response:
    """Create a pending bridge transaction and return where to deposit."""
    txn, instructions = await pipeline.create_bridge(
        require_token(body.from_token),
        require_token(body.to_token),
        body.amount,
        body.to_address,
        source_address=body.from_address,
        owner_id=owner_id,
        source_chain=parse_chain(body.from_chain),
        destination_chain=parse_chain(body.to_chain),
    )
    return Step1Response(
        transaction_id=txn.id,
        status=txn.status,
        from_chain=txn.source_chain.value,
        to_chain=txn.destination_chain.value,
        bank_wallet_address=instructions.bank_wallet_address,
        amount=format_amount(instructions.amount),
        estimated_output=format_amount(instructions.estimated_output),
        bridge_fee=format_amount(instructions.bridge_fee),
        expected_memo=instructions.expected_memo,
        instructions=instructions.instructions,
    )


# =============================================================================
# Step2 and Step3
# =============================================================================


@router.post(
    "/verify-transaction",
    response_model=VerifyTransactionResponse,
    response_model_by_alias=True,
)
async def verify_transaction(
    body: VerifyTransactionRequest,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
) -> VerifyTransactionResponse:
    """Confirm the inbound payment backing a pending transaction."""
    txn = await pipeline.verify_transaction(
        body.transaction_id,
        body.tx_hash,
        owner_id=owner_id,
        source_token=parse_token(body.from_token),
        destination_token=parse_token(body.to_token),
    )
    return VerifyTransactionResponse(
        verified=True,
        transaction_id=txn.id,
        status=txn.status,
        inbound_tx_hash=txn.inbound_tx_hash,
        explorer_url=pipeline.explorer_url(txn, ExplorerLinkKind.INBOUND),
    )


@router.post("/step3", response_model=DistributionResponse, response_model_by_alias=True)
async def step3(
    body: Step3Request,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
) -> DistributionResponse:
    """Send the quoted output of a verified transaction."""
    txn = await pipeline.execute_distribution(
        body.transaction_id,
        owner_id=owner_id,
        source_token=parse_token(body.from_token),
        destination_token=parse_token(body.to_token),
        destination_address=body.destination_address,
        inbound_tx_hash=body.step1_hash,
    )
    return DistributionResponse(
        transaction_id=txn.id,
        status=txn.status,
        tx_hash=txn.outbound_tx_hash,
        amount=format_amount(txn.amount_out),
        token=txn.destination_token.value,
        explorer_url=pipeline.explorer_url(txn, ExplorerLinkKind.OUTBOUND),
    )


# =============================================================================
# History, restart, receipts
# =============================================================================


@router.get(
    "/transactions",
    response_model=TransactionListResponse,
    response_model_by_alias=True,
)
async def list_transactions(
    pipeline: PipelineDep,
    owner_id: OwnerDep,
    status: Annotated[BridgeStatus | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> TransactionListResponse:
    """The caller's bridge history, newest first."""
    criteria = TransactionFilter(
        owner_id=owner_id,
        statuses=[status] if status else None,
        limit=limit,
        offset=offset,
    )
    transactions = await pipeline.list_transactions(criteria)
    return TransactionListResponse(
        transactions=[transaction_view(pipeline, txn) for txn in transactions],
        count=len(transactions),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    response_model_by_alias=True,
)
async def get_transaction(
    transaction_id: str,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
) -> TransactionResponse:
    txn = await pipeline.get_transaction(transaction_id, owner_id)
    return TransactionResponse(transaction=transaction_view(pipeline, txn))


@router.post(
    "/restart/{transaction_id}",
    response_model=DistributionResponse,
    response_model_by_alias=True,
)
async def restart(
    transaction_id: str,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
) -> DistributionResponse:
    """Re-drive the distribution of a transaction that failed in Step3."""
    txn = await pipeline.restart(transaction_id, owner_id)
    logger.info("bridge_restart_requested", transaction_id=txn.id, status=txn.status.value)
    return DistributionResponse(
        transaction_id=txn.id,
        status=txn.status,
        tx_hash=txn.outbound_tx_hash,
        amount=format_amount(txn.amount_out),
        token=txn.destination_token.value,
        explorer_url=pipeline.explorer_url(txn, ExplorerLinkKind.OUTBOUND),
    )


@router.get("/receipt/{transaction_id}")
async def receipt(
    transaction_id: str,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
) -> JSONResponse:
    """Downloadable JSON receipt of a completed or failed transaction."""
    document = await pipeline.get_receipt(transaction_id, owner_id)
    return JSONResponse(
        content=document.model_dump(mode="json"),
        headers={
            "Content-Disposition": f"attachment; filename=bridge-receipt-{document.transaction_id}.json"
        },
    )
