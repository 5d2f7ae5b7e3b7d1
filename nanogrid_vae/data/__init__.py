# Data pipeline: sequence files, sharding and batch sources

from .datasets import (
    DataLoaderBatchSource,
    ErrorVectorDataset,
    SyntheticErrorVectorDataset,
    collate_ctb,
    create_batch_sources,
    discover_sequence_files,
    load_sequence_files,
    partition_files,
)

__all__ = [
    "DataLoaderBatchSource",
    "ErrorVectorDataset",
    "SyntheticErrorVectorDataset",
    "collate_ctb",
    "create_batch_sources",
    "discover_sequence_files",
    "load_sequence_files",
    "partition_files",
]
