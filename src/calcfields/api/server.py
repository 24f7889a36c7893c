"""API server entry point.

Usage:
    calcfields-api

    # Via uvicorn directly
    uvicorn calcfields.api.main:create_app --factory --reload
"""

import os


def main() -> None:
    """Start the API server."""
    import uvicorn

    from calcfields.core.config import get_settings
    from calcfields.core.logging import configure_logging

    settings = get_settings()
    configure_logging(log_level=settings.log_level, log_format=settings.log_format)

    reload = os.environ.get("CALCFIELDS_API_RELOAD", "false").lower() == "true"
    settings.output_dir.mkdir(parents=True, exist_ok=True)

    print("Starting calculated fields API server...")
    print(f"  Host: {settings.api_host}:{settings.api_port}")
    print(f"  Output dir: {settings.output_dir}")
    print(f"  Config: {settings.config_path}")
    print()

    uvicorn.run(
        "calcfields.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
