from typing import NotRequired, TypedDict


class ProviderSeed(TypedDict):
    name: str
    base_url: str
    api_key_env_var: str
    models: list[str]
    models_from_list: NotRequired[bool]
    availability_requires_models_response: NotRequired[bool]
    models_refresh_interval_seconds: NotRequired[int]


# Curated providers and models written into a fresh store. Providers with
# ``models_from_list`` get their model list from the provider's /models API.
DEFAULT_PROVIDERS: list[ProviderSeed] = [
    {
        "name": "Hugging Face",
        "base_url": "https://router.huggingface.co/v1",
        "api_key_env_var": "HF_TOKEN",
        "models": [
            "Qwen/Qwen3-235B-A22B-Instruct-2507:cerebras",
            "Qwen/Qwen3-Next-80B-A3B-Instruct:hyperbolic",
            "deepseek-ai/DeepSeek-V3.1:fireworks-ai",
        ],
    },
    {
        "name": "OpenAI",
        "base_url": "https://api.openai.com/v1",
        "api_key_env_var": "OPENAI_API_KEY",
        "models": ["gpt-5", "gpt-5-mini", "gpt-5-nano", "gpt-5-pro"],
    },
    {
        "name": "Anthropic",
        "base_url": "https://api.anthropic.com/v1",
        "api_key_env_var": "ANTHROPIC_API_KEY",
        "models": ["claude-haiku-4-5-20251001"],
    },
    {
        "name": "Groq",
        "base_url": "https://api.groq.com/openai/v1",
        "api_key_env_var": "GROQ_API_KEY",
        "models": [],
    },
    {
        "name": "MiniMax",
        "base_url": "https://api.minimax.io/v1",
        "api_key_env_var": "MINIMAX_API_KEY",
        "models": ["MiniMax-M2"],
    },
    {
        "name": "zAI",
        "base_url": "https://api.z.ai/api/paas/v4",
        "api_key_env_var": "ZAI_API_KEY",
        "models": [
            "glm-4.6",
            "glm-4.5",
            "glm-4.5-air",
            "glm-4.5-x",
            "glm-4.5-airx",
            "glm-4.5-flash",
            "glm-4-32b-0414-128k",
        ],
    },
    {
        "name": "OpenRouter",
        "base_url": "https://openrouter.ai/api/v1",
        "api_key_env_var": "OPENROUTER_API_KEY",
        "models": [],
        "models_from_list": True,
    },
    {
        "name": "Cerebras",
        "base_url": "https://api.cerebras.ai/v1",
        "api_key_env_var": "CEREBRAS_API_KEY",
        "models": [],
        "models_from_list": True,
    },
    {
        "name": "Local Ollama",
        "base_url": "http://localhost:11434/v1",
        "api_key_env_var": "",
        "models": [],
        "models_from_list": True,
        "availability_requires_models_response": True,
        "models_refresh_interval_seconds": 0,
    },
]


class ToolSeed(TypedDict):
    name: str
    description: str
    invocation: str


DEFAULT_TOOLS: list[ToolSeed] = [
    {
        "name": "current_datetime",
        "description": "Return the current date and time, optionally shifted to a UTC offset.",
        "invocation": "builtin:current_datetime",
    },
]

DEFAULT_PROFILE_NAME = "default"
