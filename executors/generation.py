from typing import Dict, List

from fastapi import HTTPException
from pydantic import BaseModel, Field

from core.errors import ReasoningServiceError, ReasoningTimeout, TurnCancelled
from executors.base import BaseExecutor
from services.intent_generation import DEFAULT_PHRASE_COUNT, IntentGenerationService
from services.utils import deep_serialize


class RegenerateRequest(BaseModel):
    intentIds: List[str] = Field(..., min_length=1)
    section: str = "all"
    phraseCount: int = Field(DEFAULT_PHRASE_COUNT, ge=1, le=50)


class GenerationExecutor(BaseExecutor):
    """
    Regenerates intent configuration. One intent returns the updated intent,
    several run sequentially and return the progress counter.
    """

    def __init__(self, service: IntentGenerationService):
        self.service = service

    async def execute(self, request: RegenerateRequest) -> Dict:
        try:
            if len(request.intentIds) == 1:
                intent = await self.service.regenerate(
                    request.intentIds[0], request.section, request.phraseCount
                )
                return {
                    "type": "generation",
                    "data": deep_serialize(intent),
                    "message": f"Regenerated {request.section} for {intent.name}",
                }

            progress = await self.service.regenerate_many(
                request.intentIds, request.section, request.phraseCount
            )
            return {
                "type": "bulk_generation",
                "data": deep_serialize(progress),
                "message": f"Bulk generation complete: {progress.succeeded} succeeded, {progress.failed} failed",
            }

        except ReasoningTimeout as e:
            raise HTTPException(status_code=504, detail=str(e))
        except TurnCancelled:
            raise HTTPException(status_code=409, detail="Generation was cancelled")
        except LookupError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ReasoningServiceError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(
                status_code=500,
                detail=str(e),
            )
