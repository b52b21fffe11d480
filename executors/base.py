from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseExecutor(ABC):
    """
    Base contract for all executors.
    Executors take a validated request payload and return a response dict.
    Boundary failures become fastapi.HTTPException here, nowhere else.
    """

    @abstractmethod
    async def execute(self, request: Any) -> Dict[str, Any]:
        pass
