# To-do list service: tasks, shared lists, and AI-assisted annotation
#
# Components:
#   schema.py     - Data model (Todo, User, SharedList, Category, annotations)
#   docstore.py   - SQLite-backed document store (users, todos, shared_lists)
#   todos.py      - Todo / subtask / shared list persistence adapter
#   auth.py       - Accounts, password hashing, session cache
#   llm.py        - Hosted language/vision model client
#   analysis.py   - Category, priority, sentiment, time estimate pipeline
#   lexicon.py    - AFINN sentiment scoring with negation
#   splitter.py   - Multi-todo input splitting
#   vision.py     - Image to annotated todo drafts
#   ocr.py        - Local Tesseract OCR engine
#   insights.py   - Dashboard statistics and suggestions
#   presence.py   - Typing-aware periodic profile refresh
#   config.py     - YAML + environment settings

__version__ = "0.3.0"
