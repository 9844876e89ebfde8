"""Reflex component for the windowed grid body.

``EavViewport`` is a scroll container whose inner spacer is as tall as
the whole logical view (``total_height``).  Only the rows of the current
window are passed as children; they are positioned ``window_offset``
pixels from the top.  The component reports ``{scrollTop, clientHeight}``
to Python through ``on_viewport_change`` (at most once per animation
frame) and scrolls back to the top whenever ``scroll_key`` changes.

The React code is injected into the compiled page with
``add_imports()`` + ``add_custom_code()``, so nothing has to be
installed from npm.
"""

from typing import Any

import reflex as rx
from reflex.components.el import Div


# ---------------------------------------------------------------------------
# Event-handler argument helpers
# ---------------------------------------------------------------------------

# -- Viewport change: plain { scrollTop, clientHeight } object
def _on_viewport_change_spec(event: rx.Var) -> list[rx.Var]:
    return [event]


# ---------------------------------------------------------------------------
# Inline JS -- injected into compiled pages via add_custom_code().
# ---------------------------------------------------------------------------
_INLINE_VIEWPORT_JS = """
// Debug logger, opt-in via debugLog={true}.
const _evLog = (() => {
  let _seq = 0;
  return (enabled, ...args) => {
    if (!enabled) return;
    _seq++;
    console.log(
      `%c[EavViewport #${_seq}] %c${new Date().toISOString()}`,
      "color:#e65100;font-weight:bold",
      "color:#999",
      ...args
    );
  };
})();

const EavViewport = React.forwardRef((props, ref) => {
  const {
    totalHeight,
    windowOffset,
    scrollKey,
    onViewportChange,
    debugLog,
    children,
    style,
    ...rest
  } = props;
  const log = !!debugLog;
  const scrollerRef = React.useRef(null);
  const frameRef = React.useRef(0);
  const lastSentRef = React.useRef({ scrollTop: -1, clientHeight: -1 });

  React.useImperativeHandle(ref, () => scrollerRef.current);

  const report = React.useCallback(() => {
    frameRef.current = 0;
    const el = scrollerRef.current;
    if (!el || typeof onViewportChange !== "function") return;
    const payload = {
      scrollTop: Math.round(el.scrollTop),
      clientHeight: Math.round(el.clientHeight),
    };
    const last = lastSentRef.current;
    if (
      payload.scrollTop === last.scrollTop &&
      payload.clientHeight === last.clientHeight
    ) {
      return;
    }
    lastSentRef.current = payload;
    _evLog(log, "viewport change", payload);
    onViewportChange(payload);
  }, [onViewportChange, log]);

  // Coalesce scroll events to one report per animation frame.
  const onScroll = React.useCallback(() => {
    if (frameRef.current) return;
    frameRef.current = requestAnimationFrame(report);
  }, [report]);

  // A new scrollKey means the logical view was replaced: back to the top.
  React.useEffect(() => {
    const el = scrollerRef.current;
    if (!el) return;
    el.scrollTop = 0;
    lastSentRef.current = { scrollTop: -1, clientHeight: -1 };
    _evLog(log, "scroll reset", { scrollKey });
    report();
  }, [scrollKey]);

  // Container resizes change how many rows fit.
  React.useEffect(() => {
    const el = scrollerRef.current;
    if (!el || typeof ResizeObserver === "undefined") return;
    const observer = new ResizeObserver(() => onScroll());
    observer.observe(el);
    return () => {
      observer.disconnect();
      if (frameRef.current) cancelAnimationFrame(frameRef.current);
      frameRef.current = 0;
    };
  }, [onScroll]);

  return React.createElement(
    "div",
    {
      ...rest,
      ref: scrollerRef,
      onScroll: onScroll,
      style: {
        overflowY: "auto",
        position: "relative",
        width: "100%",
        height: "100%",
        ...(style || {}),
      },
    },
    React.createElement(
      "div",
      { style: { position: "relative", height: `${totalHeight || 0}px` } },
      React.createElement(
        "div",
        {
          style: {
            position: "absolute",
            top: `${windowOffset || 0}px`,
            left: 0,
            right: 0,
          },
        },
        children
      )
    )
  );
});
EavViewport.displayName = "EavViewport";
"""


# ---------------------------------------------------------------------------
# EavViewport component
# ---------------------------------------------------------------------------

class EavViewport(rx.Component):
    """Scroll container that renders only a window of rows.

    Requires a parent with explicit height; :func:`viewport` adds one.
    """

    library: str = "react"
    tag: str = "EavViewport"
    is_default: bool = False

    @property
    def import_var(self) -> rx.ImportVar:
        """Emit no import for the tag: ``EavViewport`` is defined by ``add_custom_code()``."""
        return rx.ImportVar(tag=None, render=False)

    def add_imports(self) -> dict:
        return {"react": [rx.ImportVar(tag="React", is_default=True)]}

    def add_custom_code(self) -> list[str]:
        return [_INLINE_VIEWPORT_JS]

    # ---- geometry ----
    total_height: rx.Var[int]
    window_offset: rx.Var[int]
    scroll_key: rx.Var[int]

    # ---- debug ----
    debug_log: rx.Var[bool]

    # ---- event handlers ----
    on_viewport_change: rx.EventHandler[_on_viewport_change_spec]


def viewport(*children: rx.Component, **props: Any) -> rx.Component:
    """Create an :class:`EavViewport` inside a ``<div>`` of the given size."""
    width = props.pop("width", "100%")
    height = props.pop("height", "600px")
    return Div.create(
        EavViewport.create(*children, **props),
        width=width,
        height=height,
    )
