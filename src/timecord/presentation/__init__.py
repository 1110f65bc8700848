"""
Everything users see.

- **presenter.py**: ``Presenter`` protocol and its ``discord.py`` implementation
  (messages, direct messages, role changes).
- **embeds.py**: Embed renderers for polls, giveaways and quarantines.
- **views.py**: Persistent button rows and their custom ids.
- **synchronizer.py**: Re-renders an entity and remembers where its message lives.
"""
