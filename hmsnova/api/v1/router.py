"""API v1 router aggregator."""

from fastapi import APIRouter

from hmsnova.api.v1 import admin, audit, auth, documents, files, risk_assessments, risks

router = APIRouter(prefix="/api/v1")
router.include_router(auth.router)
router.include_router(documents.router)
router.include_router(files.router)
router.include_router(risks.router)
router.include_router(risk_assessments.router)
router.include_router(audit.router)
router.include_router(admin.router)
