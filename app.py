"""
Run the collaborative PDF editor server.

```
pip install -e .
python app.py
```

Settings come from the environment or a ``.env`` file (see
``pdf_collab/config.py``).
"""

from pdf_collab.app import main


if __name__ == '__main__':
    main()
