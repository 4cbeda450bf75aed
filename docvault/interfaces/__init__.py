"""Public interface definitions for every external collaborator.

The DocVault core reaches storage, inference and identity exclusively
through the abstract base classes in this package.  Concrete adapters
live in ``docvault/providers/`` and are wired in ``docvault/main.py``;
unit tests inject in-memory fakes instead.

CONCRETE PROVIDER MAP:
    Interface            ->  Concrete implementations
    ---------------------------------------------------------------
    IBlobStore           ->  FilesystemBlobStore
    IMetadataStore       ->  SQLiteMetadataStore
    IVectorIndex         ->  ChromaDBVectorIndex
    ILLMProvider         ->  OpenAILLMProvider, OllamaLLMProvider
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IAuthorizer          ->  StaticAuthorizer
"""

from docvault.interfaces.authorizer import IAuthorizer
from docvault.interfaces.blob_store import IBlobStore
from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.interfaces.llm_provider import ChatTurn, ILLMProvider
from docvault.interfaces.metadata_store import IMetadataStore
from docvault.interfaces.vector_index import IVectorIndex

__all__ = [
    "ChatTurn",
    "IAuthorizer",
    "IBlobStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IMetadataStore",
    "IVectorIndex",
]
