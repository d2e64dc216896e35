#!/usr/bin/env python3
"""
Main entry point for deployment
"""
import asyncio

from promoguard.bot import main

if __name__ == "__main__":
    asyncio.run(main())
