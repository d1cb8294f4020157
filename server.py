from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, BackgroundTasks, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from deaddrop_backend import cipher
from deaddrop_backend.config import Settings, load_settings
from deaddrop_backend.datastore import CatalogStore, RecordStore, TableStore
from deaddrop_backend.errors import InvalidToken, NotFound, StorageUnavailable, StoreError
from deaddrop_backend.identity import IdentityError, TokenSigner, UserRegistry
from deaddrop_backend.locks import PathLocks
from deaddrop_backend.mailbox import MailboxStore
from deaddrop_backend.mailer import Mailer, mailer_from_settings


logger = logging.getLogger("deaddrop.server")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class _WireModel(BaseModel):
    # Accept both the camelCase wire names and the Python field names.
    model_config = ConfigDict(populate_by_name=True)


class EncryptRequest(_WireModel):
    data: str
    key: str


class DecryptRequest(_WireModel):
    encrypted_data: str = Field(alias="encryptedData")
    key: str


class RegisterRequest(_WireModel):
    username: str
    email: str


class LoginRequest(_WireModel):
    username: str
    email: str


class ForgotPasswordRequest(_WireModel):
    email: str


class SendDataRequest(_WireModel):
    token: str
    data: Any


class RetrieveDataRequest(_WireModel):
    token: str


class CreateDatabaseRequest(_WireModel):
    db_name: str = Field(alias="dbName")


class CreateTableRequest(_WireModel):
    db_name: str = Field(alias="dbName")
    table_name: str = Field(alias="tableName")


class InsertDataRequest(_WireModel):
    db_name: str = Field(alias="dbName")
    table_name: str = Field(alias="tableName")
    data: Any


@dataclass
class Services:
    settings: Settings
    mailbox: MailboxStore
    catalog: CatalogStore
    tables: TableStore
    records: RecordStore
    users: UserRegistry
    signer: TokenSigner
    mailer: Mailer


def build_services(settings: Settings, mailer: Mailer | None = None) -> Services:
    locks = PathLocks()
    catalog = CatalogStore(settings.storage_root, locks)
    tables = TableStore(catalog, locks)
    return Services(
        settings=settings,
        mailbox=MailboxStore(settings.mailbox_root, locks),
        catalog=catalog,
        tables=tables,
        records=RecordStore(tables, locks),
        users=UserRegistry(settings.users_file),
        signer=TokenSigner(settings.auth_secret, settings.token_ttl_minutes),
        mailer=mailer or mailer_from_settings(settings.smtp),
    )


def _services(request: Request) -> Services:
    return request.app.state.services


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"message": message}, status_code=status_code)


async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage failure on %s", request.url.path, exc_info=exc)
        # Never echo filesystem detail back to the caller.
        return _message(exc.status_code, type(exc).default_message)
    return _message(exc.status_code, exc.message)


async def _cleanup_worker(mailbox: MailboxStore, interval: int) -> None:
    # Periodically drop mailbox directories emptied by interrupted withdrawals.
    while True:
        await asyncio.sleep(max(30, interval))
        try:
            mailbox.prune_empty()
        except OSError:
            logger.exception("Mailbox cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    services.settings.ensure_dirs()
    services.catalog.ensure()
    services.mailbox.prune_empty()
    logger.info("Storage root: %s", services.settings.storage_root)
    logger.info("Mailbox root: %s", services.settings.mailbox_root)

    task = asyncio.create_task(
        _cleanup_worker(services.mailbox, services.settings.cleanup_interval_seconds)
    )
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


router = APIRouter()


@router.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"ok": True})


@router.post("/encrypt")
async def encrypt_data(payload: EncryptRequest) -> JSONResponse:
    try:
        encrypted = cipher.encrypt(payload.data, payload.key)
    except cipher.CipherError as e:
        return _message(400, str(e))
    return JSONResponse({"encryptedData": encrypted})


@router.post("/decrypt")
async def decrypt_data(payload: DecryptRequest) -> JSONResponse:
    try:
        decrypted = cipher.decrypt(payload.encrypted_data, payload.key)
    except cipher.CipherError as e:
        return _message(400, str(e))
    return JSONResponse({"decryptedData": decrypted})


@router.post("/register")
async def register(payload: RegisterRequest, request: Request) -> JSONResponse:
    try:
        _services(request).users.register(payload.username, payload.email)
    except IdentityError as e:
        return _message(400, str(e))
    return _message(201, "User registered successfully")


@router.post("/login")
async def login(payload: LoginRequest, request: Request) -> JSONResponse:
    services = _services(request)
    try:
        token = services.users.login(payload.username, payload.email, services.signer)
    except IdentityError as e:
        return _message(400, str(e))
    return JSONResponse({"message": "Login successful", "token": token})


@router.post("/forgot-password")
async def forgot_password(
    payload: ForgotPasswordRequest, request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    services = _services(request)
    if services.users.find_by_email(payload.email) is None:
        return _message(400, "Email not found")

    token = services.signer.issue(payload.email, purpose="reset")
    # Send after the response; delivery failures are only logged.
    background_tasks.add_task(
        services.mailer.send,
        payload.email,
        "Password Reset",
        f"Your password reset token is {token}",
    )
    return _message(200, "Password reset email sent")


@router.post("/send-data")
async def send_data(payload: SendDataRequest, request: Request) -> JSONResponse:
    services = _services(request)
    if services.users.principal_for(payload.token, services.signer) is None:
        raise InvalidToken()

    path = services.mailbox.deposit(payload.token, payload.data)
    # Relative to the mailbox root; absolute paths stay on the server.
    rel = path.relative_to(services.mailbox.root).as_posix()
    return JSONResponse({"message": "Data sent successfully", "filePath": rel})


@router.post("/retrieve-data")
async def retrieve_data(payload: RetrieveDataRequest, request: Request) -> JSONResponse:
    data, filename = _services(request).mailbox.withdraw(payload.token)
    return JSONResponse({"data": data, "filename": filename})


@router.get("/list-databases")
async def list_databases(request: Request) -> JSONResponse:
    return JSONResponse(_services(request).catalog.list_databases())


@router.get("/list-tables")
async def list_tables(request: Request, db_name: str = Query(alias="dbName")) -> JSONResponse:
    return JSONResponse(_services(request).tables.list_tables(db_name))


@router.get("/view-table-data")
async def view_table_data(
    request: Request,
    db_name: str = Query(alias="dbName"),
    table_name: str = Query(alias="tableName"),
) -> JSONResponse:
    return JSONResponse(_services(request).records.view(db_name, table_name))


@router.post("/create-database")
async def create_database(payload: CreateDatabaseRequest, request: Request) -> JSONResponse:
    _services(request).catalog.create_database(payload.db_name)
    return _message(200, f"Database {payload.db_name} created successfully")


@router.post("/create-table")
async def create_table(payload: CreateTableRequest, request: Request) -> JSONResponse:
    try:
        _services(request).tables.create_table(payload.db_name, payload.table_name)
    except NotFound as e:
        return _message(400, e.message)
    return _message(200, f"Table {payload.table_name} created successfully")


@router.post("/insert-data")
async def insert_data(payload: InsertDataRequest, request: Request) -> JSONResponse:
    try:
        _services(request).records.insert(payload.db_name, payload.table_name, payload.data)
    except NotFound as e:
        return _message(400, e.message)
    return _message(200, "Data inserted successfully")


def create_app(settings: Settings | None = None, mailer: Mailer | None = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    app = FastAPI(title="deaddrop", lifespan=lifespan)
    app.state.services = build_services(settings, mailer)
    app.add_exception_handler(StoreError, _store_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    # Static front end, if present. Mounted last so API routes win.
    if settings.public_dir is not None and settings.public_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.public_dir), html=True), name="static")

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False)
