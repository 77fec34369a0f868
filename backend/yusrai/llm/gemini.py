import os
from functools import lru_cache

from dotenv import load_dotenv
from google import genai
from google.genai import types

load_dotenv()

DEFAULT_MODEL = "gemini-2.5-flash"


@lru_cache(maxsize=1)
def get_client() -> genai.Client:
  api_key = os.getenv("GEMINI_API_KEY")
  if not api_key:
    raise ValueError("GEMINI_API_KEY environment variable is required")
  return genai.Client(api_key=api_key)


def query_gemini(prompt: str, system_instruction: str | None = None, model: str | None = None) -> str:
  """Send one prompt and return the reply text ("" when the model returns nothing)."""
  response = get_client().models.generate_content(
    model=model or os.getenv("YUSRAI_GEMINI_MODEL", DEFAULT_MODEL),
    contents=prompt,
    config=types.GenerateContentConfig(system_instruction=system_instruction),
  )
  return response.text or ""
