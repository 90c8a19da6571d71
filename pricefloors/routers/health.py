from fastapi import APIRouter, Request

router = APIRouter()


@router.get("")
def health(request: Request):
    floors = request.state.floors
    return {"status": "ok", "floors_enabled": floors.enabled}
