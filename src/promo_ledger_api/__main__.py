import os

import uvicorn

from promo_ledger_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "promo_ledger_api.app:create_app",
        factory=True,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
