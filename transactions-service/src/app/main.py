import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from uuid import UUID
from app import schemas, workers
from app.config import settings
from app.context import build_context
from app.coordinator import TransactionCoordinator
from app.db import create_schema
from app.errors import AppError
from app.messaging import RabbitClient
from app.models import TransactionStatus
import uvicorn

logger = logging.getLogger("transactions.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx = build_context(settings)
    await create_schema(ctx.engine)
    app.state.coordinator = TransactionCoordinator(ctx)

    tasks = []
    rabbit = None
    if settings.MESSAGING_ENABLED:
        rabbit = RabbitClient(settings)
        await rabbit.connect()
        tasks.append(asyncio.create_task(workers.outbox_publisher(ctx, rabbit)))
        tasks.append(asyncio.create_task(workers.settlement_consumer(app.state.coordinator, rabbit)))
    logger.info("[Transactions] Service started, %d background workers", len(tasks))

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    if rabbit is not None:
        await rabbit.close()
    await ctx.dispose()
    logger.info("[Transactions] Service stopped")


app = FastAPI(title="Transactions Service", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "code": exc.code},
    )


def get_coordinator(request: Request) -> TransactionCoordinator:
    return request.app.state.coordinator


@app.get("/health")
async def health():
    return {"status": "ok"}

@app.post("/transactions", response_model=schemas.TransactionRead, status_code=201)
async def create_transaction(
    req: schemas.TransactionCreateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.create_transaction(req)

@app.get("/transactions", response_model=list[schemas.TransactionRead])
async def list_transactions(
    search: str = "",
    status: TransactionStatus | None = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.list_transactions(search, status, limit, offset)

@app.post("/transactions/webhook")
async def payment_webhook(
    notification: schemas.SettlementNotification,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    transaction = await coordinator.handle_settlement(notification)
    if transaction is None:
        return {"status": "ignored"}
    return {"status": "settled", "transaction_id": str(transaction.id)}

@app.get("/transactions/{transaction_id}", response_model=schemas.TransactionRead)
async def get_transaction(
    transaction_id: UUID,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_transaction(transaction_id)

@app.get("/transactions/{transaction_id}/details", response_model=list[schemas.TransactionDetailRead])
async def get_transaction_details(
    transaction_id: UUID,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_details(transaction_id)

@app.get("/transactions/{transaction_id}/history", response_model=list[schemas.HistoryRead])
async def get_transaction_history(
    transaction_id: UUID,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_history(transaction_id)

@app.patch("/transactions/{transaction_id}/status", response_model=schemas.TransactionRead)
async def update_status(
    transaction_id: UUID,
    req: schemas.StatusUpdateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.transition_to_process_or_custom(transaction_id, req.status)

@app.post("/transactions/{transaction_id}/paid", response_model=schemas.TransactionRead)
async def mark_paid(
    transaction_id: UUID,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.mark_paid(transaction_id)

@app.post("/transactions/{transaction_id}/payment", response_model=schemas.PaymentRead)
async def confirm_payment(
    transaction_id: UUID,
    req: schemas.PaymentRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    transaction, change = await coordinator.confirm_payment(transaction_id, req.total_paid)
    return {"transaction": transaction, "change": float(change)}

@app.post("/transactions/{transaction_id}/cancel", response_model=schemas.TransactionRead)
async def cancel_transaction(
    transaction_id: UUID,
    coordinator: TransactionCoordinator = Depends(get_coordinator)
):
    return await coordinator.cancel(transaction_id)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
