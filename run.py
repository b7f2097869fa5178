#!/usr/bin/env python3
"""
Exam Proctor - Local bridge startup script
Run this file to start the bridge the exam page talks to
"""

import os
import sys
from pathlib import Path


def check_environment():
    """Check if environment is properly set up"""
    print("🔍 Checking environment setup...")

    from dotenv import load_dotenv

    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
    else:
        print("⚠️  WARNING: .env file not found, using defaults")

    if not os.getenv("EXAM_API_URL"):
        print("⚠️  WARNING: EXAM_API_URL is not set, using http://localhost:5000/api")

    if not os.getenv("EXAM_API_TOKEN"):
        print("❌ ERROR: EXAM_API_TOKEN is not set!")
        print("📝 Set the student's access token in .env")
        return False

    print("✅ Environment check passed!")
    return True


def check_dependencies():
    """Check if all dependencies are installed"""
    print("\n🔍 Checking dependencies...")

    try:
        import fastapi
        import uvicorn
        import httpx
        import cv2
        print("✅ All core dependencies installed!")
        return True
    except ImportError as e:
        print(f"❌ ERROR: Missing dependency: {e}")
        print("\n📦 Install dependencies with:")
        print("   pip install -e .")
        return False


def print_banner():
    """Print startup banner"""
    banner = """
╔═══════════════════════════════════════════════════╗
║                                                   ║
║                   Exam Proctor                    ║
║           Proctored Exam Session Engine           ║
║                                                   ║
║                   Local Bridge                    ║
║                   Version 1.0.0                   ║
║                                                   ║
╚═══════════════════════════════════════════════════╝
    """
    print(banner)


def print_startup_info(host, port):
    """Print startup information"""
    print("\n🚀 Starting bridge...")
    print("\n📚 Once started, you can access:")
    print(f"   • API Docs (Swagger): http://{host}:{port}/docs")
    print(f"   • Health Check:       http://{host}:{port}/health")
    print("\n💡 Press CTRL+C to stop the bridge")
    print("\n" + "="*55 + "\n")


def main():
    """Main startup function"""
    print_banner()

    if not check_environment():
        sys.exit(1)

    if not check_dependencies():
        sys.exit(1)

    try:
        import uvicorn
        from exam_proctor.config import settings

        print_startup_info(settings.host, settings.port)

        uvicorn.run(
            "exam_proctor.main:app",
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
            log_level=settings.LOG_LEVEL.lower()
        )
    except KeyboardInterrupt:
        print("\n\n👋 Bridge stopped by user")
    except Exception as e:
        print(f"\n❌ ERROR: Failed to start bridge: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
