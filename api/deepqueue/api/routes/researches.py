from fastapi import APIRouter, Depends, HTTPException, status

from deepqueue.core.errors import AuthenticationError, ConfigurationError, UpstreamError, ValidationError
from deepqueue.schemas.events import ResearchEventsOut
from deepqueue.schemas.research import Research, ResearchCreateRequest, ResearchListOut
from deepqueue.services.events import EventCorrelator, get_event_correlator
from deepqueue.services.research_store import ResearchStore, get_research_store
from deepqueue.services.submitter import RequestSubmitter, get_request_submitter

router = APIRouter()


@router.post("", response_model=Research, status_code=status.HTTP_201_CREATED)
async def create_research(
    payload: ResearchCreateRequest,
    submitter: RequestSubmitter = Depends(get_request_submitter),
) -> Research:
    try:
        return await submitter.submit(payload.question)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except (ConfigurationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("", response_model=ResearchListOut)
async def list_researches(research_store: ResearchStore = Depends(get_research_store)) -> ResearchListOut:
    try:
        researches = await research_store.list()
    except (ConfigurationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ResearchListOut(researches=researches)


@router.get("/{research_id}", response_model=Research)
async def get_research(
    research_id: str,
    research_store: ResearchStore = Depends(get_research_store),
) -> Research:
    try:
        research = await research_store.get(research_id)
    except (ConfigurationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if research is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="research not found")
    return research


@router.get("/{research_id}/events", response_model=ResearchEventsOut)
async def get_research_events(
    research_id: str,
    research_store: ResearchStore = Depends(get_research_store),
    correlator: EventCorrelator = Depends(get_event_correlator),
) -> ResearchEventsOut:
    research = await research_store.get(research_id)
    if research is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="research not found")

    try:
        events = await correlator.get_correlated_events(research.id, research.upstream_job_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except (AuthenticationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return ResearchEventsOut(research_id=research.id, events=events, count=len(events))
