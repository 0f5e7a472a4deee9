from __future__ import annotations
from deploystack_server.core.config import settings
from deploystack_server.core.logging_config import configure_logging


def main():
    configure_logging(settings.log_level)
    print(f"[entrypoint] starting version={settings.version} log_level={settings.log_level}", flush=True)
    print(f"[entrypoint] data_dir={settings.data_dir}", flush=True)
    for line in settings.diagnostics or []:
        print(f"[entrypoint][config] {line}", flush=True)
    import uvicorn
    from uvicorn.config import LOGGING_CONFIG
    print(f"[entrypoint] launching uvicorn on {settings.host}:{settings.port}", flush=True)
    try:
        uvicorn.run(
            'deploystack_server.main:app',
            host=settings.host,
            port=settings.port,
            reload=False,
            log_level=settings.log_level.lower(),
            log_config=LOGGING_CONFIG,
        )
    finally:
        print("[entrypoint] uvicorn stopped", flush=True)


if __name__ == '__main__':  # pragma: no cover
    main()
