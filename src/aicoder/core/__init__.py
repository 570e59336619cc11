"""Application core: state, chat session, events and the event loop."""
