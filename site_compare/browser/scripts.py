"""JavaScript payloads executed through ``driver.execute_script``.

All payloads are opaque strings taking positional ``arguments``. Helpers
shared by several payloads (frame walking, locator building, text
canonicalisation) are prepended as plain function declarations.
"""
from __future__ import annotations

__all__ = (
    "SIGNATURE_JS",
    "DOM_FINGERPRINT_JS",
    "CLICK_BY_LOCATOR_JS",
    "DISCOVER_CLICKABLES_JS",
    "FIND_EQUIVALENT_JS",
    "FETCH_STATUS_JS",
    "FORM_OPTIONS_JS",
    "SELECT_OPTION_JS",
    "SUBMIT_FORM_JS",
    "CONTENT_TYPE_JS",
    "RESET_STORAGE_JS",
)

_HELPERS = r"""
function scDocs(rootDoc){
  const out = [{doc: rootDoc, docKey: 'top', frameSrc: ''}];
  (function walk(doc, prefix){
    const frames = doc.querySelectorAll('iframe,frame');
    let idx = 0;
    for (const f of frames){
      idx++;
      try {
        const cd = f.contentDocument;
        if (!cd) continue;
        const src = f.getAttribute('src') || '';
        const key = (prefix ? prefix + '>' : '') + 'iframe[' + idx + ']:' + src;
        out.push({doc: cd, docKey: key, frameSrc: src});
        walk(cd, key);
      } catch (e) { /* cross-origin */ }
    }
  })(rootDoc, '');
  return out;
}
function scCanon(s){
  if (!s) return '';
  return s.replace(/&nbsp;/g, ' ').replace(/\u00A0/g, ' ').replace(/\s+/g, ' ').trim();
}
function scOnclick(el){
  let txt = el.getAttribute('onclick') || '';
  if (!txt){
    const h = el.getAttribute('href') || '';
    if (/^\s*javascript:/i.test(h)) txt = h.replace(/^\s*javascript:\s*/i, '');
  }
  if (!txt) return '';
  txt = txt.replace(/\s+/g, ' ');
  const m = txt.match(/([A-Za-z_$][\w$\.]*)\s*\(([^)]*)\)/);
  if (!m) return txt;
  return m[1].split('.').pop() + '(' + m[2].split(',').map(s => s.trim()).join(',') + ')';
}
function scXPathLiteral(s){
  if (s.indexOf('"') < 0) return '"' + s + '"';
  if (s.indexOf("'") < 0) return "'" + s + "'";
  return 'concat("' + s.split('"').join("\", '\"', \"") + '")';
}
function scLocator(el){
  if (!el || el.nodeType !== 1) return null;
  const doc = el.ownerDocument;
  const id = el.getAttribute('id');
  if (id && doc.querySelectorAll('#' + CSS.escape(id)).length === 1){
    return '//*[@id=' + scXPathLiteral(id) + ']';
  }
  const steps = [];
  let cur = el;
  while (cur && cur.nodeType === 1 && cur !== doc.documentElement){
    const tag = (cur.tagName || '').toLowerCase();
    let i = 1, sib = cur;
    while ((sib = sib.previousElementSibling) != null){
      if (sib.tagName.toLowerCase() === tag) i++;
    }
    steps.push(tag + '[' + i + ']');
    cur = cur.parentElement;
  }
  if (doc.documentElement && doc.documentElement !== el){
    steps.push((doc.documentElement.tagName || 'html').toLowerCase() + '[1]');
  }
  steps.reverse();
  return '//' + steps.join('/');
}
"""

SIGNATURE_JS = r"""
return (function(){
  function domSig(doc){
    try {
      return String((doc.body && doc.body.innerText || '').length) + '#' + String(doc.querySelectorAll('*').length);
    } catch (e) { return '0#0'; }
  }
  const frames = [];
  (function walk(doc){
    const list = Array.from(doc.querySelectorAll('iframe, frame'));
    for (let i = 0; i < list.length; i++){
      const fr = list[i];
      let sameOrigin = true, href = '';
      try { href = (fr.contentWindow && fr.contentWindow.location.href) || ''; }
      catch (e) { sameOrigin = false; }
      frames.push({index: i, id: fr.getAttribute('id') || '', src: fr.getAttribute('src') || '',
                   href: href, sameOrigin: sameOrigin});
      try { if (fr.contentDocument) walk(fr.contentDocument); } catch (e) { /* cross-origin */ }
    }
  })(document);
  return {topHref: location.href, topSig: domSig(document), frames: frames};
})();
"""

DOM_FINGERPRINT_JS = r"""
const root = document.body;
if (!root) return [0, 0];
return [(root.innerText || '').length, document.querySelectorAll('*').length];
"""

CLICK_BY_LOCATOR_JS = _HELPERS + r"""
return (function(xp){
  for (const ctx of scDocs(document)){
    const d = ctx.doc;
    let el = null;
    try {
      const res = d.evaluate(xp, d, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null);
      el = res && res.singleNodeValue;
    } catch (e) { el = null; }
    if (!el) continue;
    try { el.scrollIntoView({block: 'center', inline: 'center'}); } catch (e) {}
    try {
      el.click();
    } catch (e) {
      try {
        const evt = d.createEvent('MouseEvents');
        evt.initEvent('click', true, true);
        el.dispatchEvent(evt);
      } catch (_) {}
    }
    return true;
  }
  return false;
})(arguments[0]);
"""

DISCOVER_CLICKABLES_JS = _HELPERS + r"""
return (function(finders, excluded){
  function visible(el){
    const cs = el.ownerDocument.defaultView.getComputedStyle(el);
    if (!cs || cs.display === 'none' || cs.visibility === 'hidden' || +cs.opacity === 0) return false;
    const r = el.getBoundingClientRect();
    return r.width > 0 && r.height > 0;
  }
  const out = [];
  for (const ctx of scDocs(document)){
    const pool = new Set();
    ctx.doc.querySelectorAll(finders).forEach(n => pool.add(n));
    for (const el of pool){
      if (!visible(el)) continue;
      if (el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true') continue;
      if (excluded.some(sel => el.matches(sel))) continue;
      let href = el.getAttribute('href') || '';
      if (!href && el.closest('a[href]')) href = el.closest('a[href]').getAttribute('href') || '';
      const tag = (el.tagName || '').toLowerCase();
      const kind = tag === 'a' ? 'a'
                 : tag === 'button' ? 'button'
                 : el.hasAttribute('onclick') ? 'onclick'
                 : el.getAttribute('role') === 'link' ? 'role-link'
                 : 'other';
      const locator = scLocator(el);
      if (!locator) continue;
      out.push({locator: locator, text: scCanon(el.innerText || el.textContent || '').slice(0, 160),
                href: href, kind: kind, onclick: scOnclick(el), doc_key: ctx.docKey,
                frame_src: ctx.frameSrc || ''});
    }
  }
  return out;
})(arguments[0], arguments[1]);
"""

FIND_EQUIVALENT_JS = _HELPERS + r"""
return (function(meta, minScore){
  function lc(s){ return scCanon(s).toLowerCase(); }
  function pathOnly(u){
    try { const x = new URL(u, location.href); return x.pathname + (x.search || ''); }
    catch (e) { return ''; }
  }
  function jaccard(a, b){
    const A = new Set(lc(a).split(/\s+/).filter(Boolean));
    const B = new Set(lc(b).split(/\s+/).filter(Boolean));
    if (!A.size && !B.size) return 1;
    let inter = 0;
    for (const t of A){ if (B.has(t)) inter++; }
    return inter / (A.size + B.size - inter || 1);
  }
  const kindSelector = {'a': 'a', 'button': 'button', 'onclick': '[onclick]', 'role-link': '[role="link"]'};
  const wanted = kindSelector[meta.kind] || 'a,button,[role="link"],[onclick]';
  const wantText = scCanon(meta.text || '');
  const wantHref = pathOnly(meta.href || '');
  const wantSig = meta.onclick || '';
  let best = {score: -1, el: null};
  for (const ctx of scDocs(document)){
    for (const el of ctx.doc.querySelectorAll(wanted)){
      const text = el.innerText || el.textContent || '';
      const href = (el.getAttribute && el.getAttribute('href')) || '';
      const sig = scOnclick(el);
      let s = 0;
      if (scCanon(text) === wantText) s += 3;
      else if (wantText && lc(text).includes(wantText.toLowerCase())) s += 1;
      if (wantHref && pathOnly(href) === wantHref) s += 2;
      if (wantSig && sig && sig === wantSig) s += 2;
      s += jaccard(text, wantText);
      if (s > best.score) best = {score: s, el: el};
    }
  }
  if (!best.el || best.score < minScore) return null;
  return {locator: scLocator(best.el), score: best.score};
})(arguments[0], arguments[1]);
"""

FETCH_STATUS_JS = r"""
const done = arguments[arguments.length - 1];
(async function(){
  try {
    const res = await fetch(location.href, {method: 'GET', redirect: 'manual', cache: 'no-store',
                                            credentials: 'same-origin'});
    done({status: res.status, ct: res.headers.get('content-type') || ''});
  } catch (e) {
    done({status: 0, ct: '', err: String(e)});
  }
})();
"""

FORM_OPTIONS_JS = r"""
const sel = document.querySelector(arguments[0]);
if (!sel || !sel.options) return null;
const out = [];
for (const opt of sel.options){
  if (opt.disabled) continue;
  const v = opt.value || (opt.text || '').trim();
  if (v) out.push(v);
}
return out;
"""

SELECT_OPTION_JS = r"""
const sel = document.querySelector(arguments[0]), val = arguments[1];
if (!sel || !sel.options) return false;
for (const opt of sel.options){
  if (opt.value == val || (opt.text || '').trim() == val){
    sel.value = opt.value;
    sel.dispatchEvent(new Event('change', {bubbles: true}));
    return true;
  }
}
return false;
"""

SUBMIT_FORM_JS = r"""
const sel = document.querySelector(arguments[0]);
const scope = (sel && sel.closest('form')) || document;
const btn = scope.querySelector(arguments[1]) || document.querySelector(arguments[1]);
if (!btn) return false;
btn.click();
return true;
"""

CONTENT_TYPE_JS = "return (document.contentType || '');"

RESET_STORAGE_JS = r"""
try { localStorage.clear(); } catch (e) {}
try { sessionStorage.clear(); } catch (e) {}
return true;
"""
