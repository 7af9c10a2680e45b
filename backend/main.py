"""KinKonnect - Family Tree Discovery Backend.

FastAPI server exposing similar-tree discovery and relationship finding,
with GitHub Copilot SDK integration for naming relationships.
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("kinkonnect")

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv

from copilot import CopilotClient
from discovery import (
    DiscoveryInternalError,
    DiscoveryTimeoutError,
    MatchedTreeResult,
    ProfileNotFoundError,
    UnauthenticatedError,
    find_similar_family_trees,
)
from family_store import FamilyStore, JsonFamilyStore, StoreError
from records import tree_from_documents
from relationship_describer import RelationshipDescriber
from relationship_path import PathStep, find_relationship_path

# Load environment variables
load_dotenv()

DATA_FILE = os.getenv("KINKONNECT_DATA_FILE", "sample-trees.json")
COPILOT_CLI_URL = os.getenv("COPILOT_CLI_URL", "localhost:4321")
COPILOT_MODEL = os.getenv("COPILOT_MODEL", "gpt-4.1")
DISCOVERY_TIMEOUT_SECONDS = float(os.getenv("DISCOVERY_TIMEOUT_SECONDS", "60"))
COPILOT_TIMEOUT_SECONDS = float(os.getenv("COPILOT_TIMEOUT_SECONDS", "60"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"
    ).split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - open the store and start/stop the one Copilot client."""
    app.state.family_store = JsonFamilyStore(DATA_FILE)
    logger.info(f"Using family store at {DATA_FILE}")

    # Start the CLI separately with: copilot --server --port 4321
    logger.info("Initializing Copilot client...")
    copilot_client = CopilotClient({
        "cli_url": COPILOT_CLI_URL,
        "log_level": "info",
    })
    await copilot_client.start()
    app.state.relationship_describer = RelationshipDescriber(
        copilot_client, model=COPILOT_MODEL, timeout=COPILOT_TIMEOUT_SECONDS
    )
    logger.info(f"Copilot client started and connected to {COPILOT_CLI_URL}")

    yield

    logger.info("Shutting down Copilot client...")
    app.state.relationship_describer = None
    await copilot_client.stop()
    logger.info("Copilot client stopped")


# Create FastAPI app
app = FastAPI(
    title="KinKonnect",
    description="Family tree discovery and relationship finding",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class DiscoveryResponse(BaseModel):
    """Trees found to overlap with the caller's tree, in scan order."""
    matches: list[MatchedTreeResult]


class RelationshipRequest(BaseModel):
    person1_id: str
    person2_id: str


class RelationshipResponse(BaseModel):
    path_found: bool
    path: list[PathStep] = []
    generation_gap: int | None = None
    relationship_name: str | None = None
    explanation: str | None = None


# Dependencies

def get_family_store(request: Request) -> FamilyStore:
    store = getattr(request.app.state, "family_store", None)
    if store is None:
        logger.error("Family store not initialized")
        raise HTTPException(status_code=503, detail="Family store not initialized")
    return store


def get_caller_uid(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity as asserted by the authenticating gateway."""
    if not x_user_id:
        logger.warning("Unauthenticated request rejected")
        raise HTTPException(status_code=401, detail="The request must be made while authenticated.")
    return x_user_id


# Endpoints

@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "copilot_connected": getattr(request.app.state, "relationship_describer", None) is not None,
    }


@app.post("/discover/similar-trees", response_model=DiscoveryResponse)
async def discover_similar_trees(
    caller_uid: str = Depends(get_caller_uid),
    store: FamilyStore = Depends(get_family_store),
):
    """Find other users whose trees plausibly overlap the caller's."""
    logger.info(f"Similar-tree discovery requested by {caller_uid}")
    deadline = time.monotonic() + DISCOVERY_TIMEOUT_SECONDS

    try:
        matches = await run_in_threadpool(find_similar_family_trees, store, caller_uid, deadline)
    except UnauthenticatedError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DiscoveryTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except DiscoveryInternalError as e:
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Returning {len(matches)} match(es) to {caller_uid}")
    return DiscoveryResponse(matches=matches)


@app.post("/relationship", response_model=RelationshipResponse)
async def find_relationship(
    body: RelationshipRequest,
    request: Request,
    caller_uid: str = Depends(get_caller_uid),
    store: FamilyStore = Depends(get_family_store),
):
    """Find how two people in the caller's own tree are related, and name it."""
    logger.info(f"Relationship lookup by {caller_uid}: {body.person1_id} -> {body.person2_id}")

    if body.person1_id == body.person2_id:
        raise HTTPException(status_code=400, detail="Please select two different people.")

    try:
        profile_doc = store.get_profile(caller_uid)
        if profile_doc is None:
            raise HTTPException(status_code=404, detail="User profile not found.")
        people = tree_from_documents(caller_uid, profile_doc, store.get_family_members(caller_uid))
    except (StoreError, ValidationError, TypeError) as e:
        logger.error(f"Failed to load tree for {caller_uid}: {str(e)}")
        raise HTTPException(status_code=500, detail="Could not load family data. Please try again.")

    result = find_relationship_path(body.person1_id, body.person2_id, people)
    if not result.path_found:
        return RelationshipResponse(path_found=False)

    describer: RelationshipDescriber | None = getattr(request.app.state, "relationship_describer", None)
    if describer is None:
        logger.error("Copilot client not initialized")
        raise HTTPException(status_code=503, detail="Copilot client not initialized")

    try:
        description = await describer.describe(
            result.path[0].person_name,
            result.path[-1].person_name,
            result.path,
        )
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Naming the relationship took too long. Please try again.")
    return RelationshipResponse(
        path_found=True,
        path=result.path,
        generation_gap=result.generation_gap,
        relationship_name=description.relationship_name,
        explanation=description.explanation,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
