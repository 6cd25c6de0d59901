"""
Static HTML page served at /ws.

The page connects back to the server it was loaded from, using wss:// when it
was loaded over https://, and echoes whatever the user types.
"""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus


WEBSOCKET_PATH = "/ws"

WEBSOCKET_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>websocket echo</title>
<style>
  body { font-family: monospace; margin: 2em; }
  #log { border: 1px solid #ccc; height: 20em; overflow-y: scroll; padding: 0.5em; }
  .sent { color: #06c; }
  .received { color: #090; }
  .status { color: #999; }
</style>
</head>
<body>
<h1>WebSocket Echo</h1>
<form id="form">
  <input id="message" type="text" size="60" autocomplete="off" autofocus>
  <button type="submit">Send</button>
</form>
<pre id="log"></pre>
<script>
(function () {
  var scheme = location.protocol === "https:" ? "wss://" : "ws://";
  var url = scheme + location.host + "/ws";
  var log = document.getElementById("log");
  var input = document.getElementById("message");

  function append(cls, text) {
    var line = document.createElement("div");
    line.className = cls;
    line.textContent = text;
    log.appendChild(line);
    log.scrollTop = log.scrollHeight;
  }

  append("status", "connecting to " + url);
  var ws = new WebSocket(url);

  ws.onopen = function () { append("status", "connected"); };
  ws.onclose = function (ev) { append("status", "closed (" + ev.code + ")"); };
  ws.onerror = function () { append("status", "error"); };
  ws.onmessage = function (ev) { append("received", "< " + ev.data); };

  document.getElementById("form").onsubmit = function (ev) {
    ev.preventDefault();
    if (ws.readyState !== WebSocket.OPEN || !input.value) {
      return;
    }
    ws.send(input.value);
    append("sent", "> " + input.value);
    input.value = "";
  };
})();
</script>
</body>
</html>
"""


def websocket_page(request: HTTPRequest) -> HTTPResponse:
    """200 with the demo page, for any method."""
    return (ResponseBuilder()
        .status(HTTPStatus.OK)
        .content_type("text/html")
        .body(WEBSOCKET_HTML)
        .build())
