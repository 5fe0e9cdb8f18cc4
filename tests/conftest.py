"""
Shared Test Fixtures
====================

A small CodeForge-like project used across the engine tests: a header with
a save button, a sidebar, shared utilities and the protected agent safety
code.
"""

import pytest


SAMPLE_FILES = {
    "app/page.tsx": (
        "import React from 'react';\n"
        "import { Header } from '@/components/header/header';\n"
        "\n"
        "export default function Page() {\n"
        "  return (\n"
        "    <main>\n"
        "      <Header />\n"
        "    </main>\n"
        "  );\n"
        "}\n"
    ),
    "components/header/header.tsx": (
        "import React from 'react';\n"
        "import { SaveButton } from './save-button';\n"
        "import styles from './header.css';\n"
        "\n"
        "export function Header() {\n"
        "  return (\n"
        "    <header className={styles.bar}>\n"
        "      <SaveButton onSave={() => undefined} />\n"
        "    </header>\n"
        "  );\n"
        "}\n"
    ),
    "components/header/save-button.tsx": (
        "import React from 'react';\n"
        "\n"
        "interface SaveButtonProps {\n"
        "  onSave: () => void;\n"
        "  disabled?: boolean;\n"
        "}\n"
        "\n"
        "export function SaveButton({ onSave, disabled }: SaveButtonProps) {\n"
        "  return (\n"
        "    <button className=\"btn\" onClick={onSave} disabled={disabled}>\n"
        "      Save\n"
        "    </button>\n"
        "  );\n"
        "}\n"
    ),
    "components/header/header.css": ".bar {\n  display: flex;\n}\n",
    "components/sidebar/file-explorer.tsx": (
        "import React from 'react';\n"
        "import { cn } from '../../lib/utils';\n"
        "\n"
        "export function FileExplorer() {\n"
        "  return <aside className={cn('explorer')}>Files</aside>;\n"
        "}\n"
    ),
    "lib/utils.ts": (
        "export function cn(...classes: string[]) {\n"
        "  return classes.filter(Boolean).join(' ');\n"
        "}\n"
    ),
    "lib/agent/constants.ts": "export const MAX_STEPS = 10;\n",
    "lib/agent/safety/guard.ts": (
        "import { MAX_STEPS } from '../constants';\n"
        "\n"
        "export function guard(steps: number) {\n"
        "  return steps <= MAX_STEPS;\n"
        "}\n"
    ),
}

# Save button with an unclosed function body
BROKEN_SAVE_BUTTON = (
    "import React from 'react';\n"
    "\n"
    "export function SaveButton() {\n"
    "  return <button className=\"btn\">Save</button>;\n"
)

FIXED_SAVE_BUTTON = (
    "import React from 'react';\n"
    "\n"
    "export function SaveButton() {\n"
    "  return <button className=\"btn btn-center\">Save</button>;\n"
    "}\n"
)


@pytest.fixture
def sample_files():
    """A fresh copy of the sample project file map."""
    return dict(SAMPLE_FILES)


@pytest.fixture
def broken_save_button():
    return BROKEN_SAVE_BUTTON


@pytest.fixture
def fixed_save_button():
    return FIXED_SAVE_BUTTON
