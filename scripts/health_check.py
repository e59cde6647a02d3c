"""Health check script for all environments"""
import asyncio
import sys
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).parent.parent))

from economy_engine.core.config import get_settings


async def check_health():
    settings = get_settings()

    urls = {
        "local": "http://localhost:8001/health",
        "dev": "http://localhost:8000/health",
        "staging": "https://staging.economy.internal/health",
        "prod": "https://economy.internal/health",
    }

    env = settings.ENVIRONMENT.value
    url = urls.get(env)
    if not url:
        print(f"Unknown environment: {env}")
        return False

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(url)
            data = response.json()

            print(f"Environment: {env}")
            print(f"Status: {data['status']}")
            print("Services:")
            for service, status in data["services"].items():
                emoji = "✅" if status else "❌"
                print(f"  {emoji} {service}: {status}")

            return data["status"] == "healthy"

    except Exception as e:
        print(f"❌ Health check failed: {e}")
        return False


if __name__ == "__main__":
    healthy = asyncio.run(check_health())
    sys.exit(0 if healthy else 1)
