from .llm_builder import build_chat_model, build_embeddings

__all__ = ["build_chat_model", "build_embeddings"]
