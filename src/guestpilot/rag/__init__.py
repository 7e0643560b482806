"""Knowledge base storage, chunking and similarity search."""
