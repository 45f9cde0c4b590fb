"""
Infinizoom: an infinitely wrapping panorama viewer that enhances the region
you zoom into.
"""

from dotenv import load_dotenv, find_dotenv

# API keys (GEMINI_API_KEY) may live in a .env file; real environment values win
load_dotenv(find_dotenv(usecwd=True), override=False)

__version__ = "0.1.0"
