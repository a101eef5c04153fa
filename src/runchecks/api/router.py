from fastapi import APIRouter

from runchecks.api.auth_router import auth_router
from runchecks.api.google_router import google_router
from runchecks.api.runcheck_router import runcheck_router
from runchecks.api.user_router import user_router
from runchecks.api.ws_router import ws_router

app_router = APIRouter()

app_router.include_router(auth_router)
app_router.include_router(runcheck_router)
app_router.include_router(user_router)
app_router.include_router(google_router)
app_router.include_router(ws_router)
