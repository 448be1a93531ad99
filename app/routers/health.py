from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])

@router.get("/health")
async def health(request: Request):
    use_procedures = getattr(request.app.state, "use_procedures", False)
    return {
        "status": "ok",
        "data_path": "procedures" if use_procedures else "queries",
    }
